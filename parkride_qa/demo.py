"""
CLI demo runner for the park-and-ride Q&A chatbot.
Answers sample queries and displays formatted results.
"""

import asyncio
import json
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()  # Load .env file

from .schemas import ChatResponse
from .llm_client import get_llm_client
from .kb.collections import get_search_settings
from .kb.retriever import KnowledgeRetriever
from .pipeline.adjacency import load_tag_adjacency
from .pipeline.chat import answer_query
from .utils import (
    print_separator, print_section_header,
    format_context_badge, setup_logging, truncate_text
)


def get_project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


def load_sample_queries() -> list[str]:
    """Load sample queries from the data directory."""
    data_path = get_project_root() / "data" / "sample_queries.json"

    with open(data_path, "r", encoding="utf-8") as f:
        return json.load(f)


def print_chat_result(query: str, response: ChatResponse):
    """Print a formatted chat result."""
    print_separator("=")
    print(f"QUERY: {query}")
    print_separator("=")

    print_section_header("ANSWER")
    print(response.answer)

    print_section_header("SOURCES")
    if response.sources:
        for i, source in enumerate(response.sources, 1):
            print(f"{i}. {format_context_badge(source.context.value)} {source.question}")
            print(f"   Tags: {', '.join(source.tags) or '-'} | Score: {source.score:.2f}")
            print(f"   \"{truncate_text(source.answer.replace(chr(10), ' '), 80)}\"")
    else:
        print("No matching knowledge found.")

    print_section_header("RELATED QUESTIONS")
    if response.related_questions:
        for question in response.related_questions:
            print(f"  - {question}")
    else:
        print("  (none)")
    print()


def run_demo(queries: list[str] | None = None, show_json: bool = False):
    """
    Run the demo on the sample queries.

    Args:
        queries: Queries to answer (defaults to data/sample_queries.json)
        show_json: Whether to print the JSON responses at the end
    """
    print("\n" + "=" * 70)
    print("  PARK & RIDE Q&A CHATBOT")
    print("  Demo Mode")
    print("=" * 70 + "\n")

    setup_logging()

    # Initialize components
    print("Initializing system...")
    llm = get_llm_client()
    retriever = KnowledgeRetriever(use_mock=llm.is_mock)
    table = load_tag_adjacency()
    print(f"LLM Mode: {'MOCK (deterministic)' if llm.is_mock else 'REAL (OpenAI)'}")
    print(f"KB Mode: {'MOCK embeddings' if llm.is_mock else 'OpenAI embeddings'}")
    print(f"Knowledge records: {retriever.count()}")
    print()

    queries = queries or load_sample_queries()

    results = []
    for i, query in enumerate(queries, 1):
        print(f"Answering query {i}/{len(queries)}")
        response = asyncio.run(answer_query(query, retriever, llm, table, **get_search_settings()))
        results.append(response)
        print_chat_result(query, response)

    if show_json:
        print_separator("=")
        print("FULL JSON OUTPUT")
        print_separator("=")
        output = [r.model_dump(mode="json", by_alias=True) for r in results]
        print(json.dumps(output, indent=2, ensure_ascii=False))

    return results


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run the Q&A chatbot demo")
    parser.add_argument("queries", nargs="*", help="Queries to answer (default: sample queries)")
    parser.add_argument("--json", action="store_true", help="Print full JSON output")
    args = parser.parse_args()

    run_demo(args.queries or None, show_json=args.json)
