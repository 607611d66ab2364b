"""
Related-question selection.

Follow-up questions come from two sources: knowledge records whose tags
are adjacent to the matched record's tags within its context, and
questions suggested by the LLM.
"""

import json
from typing import Iterable, Protocol

from ..errors import UpstreamError
from ..llm_client import LLMProvider
from ..schemas import KnowledgeRecord, SearchContext, SearchHit
from ..utils import get_logger
from .adjacency import TagAdjacencyTable

logger = get_logger("pipeline.related")

DEFAULT_MAX_QUESTIONS = 3
RELATED_CANDIDATE_K = 7


class SupportsSimilaritySearch(Protocol):
    def similarity_search(self, query: str, k: int | None = None) -> list[SearchHit]: ...


suggest_system_prompt = """以下の情報と元の質問を参考に、ユーザーが次に尋ねそうな関連質問を{count}つ生成してください。
質問はJSON形式の文字列配列だけで返してください。例: ["質問1", "質問2", "質問3"]

情報:
{context}

元の質問: {query}"""


def select_related_questions(
    current_question: str,
    current_tags: list[str],
    context: SearchContext,
    candidates: Iterable[KnowledgeRecord],
    table: TagAdjacencyTable,
    max_questions: int = DEFAULT_MAX_QUESTIONS
) -> list[str]:
    """
    Filter a candidate pool down to related follow-up questions.

    Args:
        current_question: Question of the matched record (excluded from results)
        current_tags: Tags of the matched record
        context: Context of the matched record
        candidates: Records from a similarity search seeded by current_question
        table: Tag adjacency table
        max_questions: Maximum number of questions to return

    Returns:
        Distinct questions in candidate order, at most max_questions.
        An empty list means no related question was found.
    """
    if max_questions <= 0:
        return []

    selected: list[str] = []
    for record in candidates:
        if record.question == current_question:
            continue
        if not record.tags:
            continue
        if record.question in selected:
            continue
        if not table.any_related(record.tags, current_tags, context):
            continue

        selected.append(record.question)
        if len(selected) >= max_questions:
            break

    return selected


def get_related_questions(
    retriever: SupportsSimilaritySearch,
    current_question: str,
    current_tags: list[str],
    table: TagAdjacencyTable,
    context: SearchContext = SearchContext.default,
    max_questions: int = DEFAULT_MAX_QUESTIONS,
    k: int = RELATED_CANDIDATE_K
) -> list[str]:
    """Search for candidates seeded by the current question, then select related ones."""
    hits = retriever.similarity_search(current_question, k=k)
    return select_related_questions(
        current_question=current_question,
        current_tags=current_tags,
        context=context,
        candidates=[hit.record for hit in hits],
        table=table,
        max_questions=max_questions
    )


def parse_question_list(raw) -> list[str]:
    """
    Parse LLM output into a list of question strings.

    Accepts a JSON array, or an object holding one under "questions".
    Raises ValueError for anything else.
    """
    if isinstance(raw, str):
        raw = json.loads(raw)
    if isinstance(raw, dict):
        raw = raw.get("questions")
    if not isinstance(raw, list):
        raise ValueError(f"expected a JSON array, got {type(raw).__name__}")
    return [str(q).strip() for q in raw if isinstance(q, str) and q.strip()]


def suggest_related_questions(
    query: str,
    records: list[KnowledgeRecord],
    llm: LLMProvider,
    count: int = DEFAULT_MAX_QUESTIONS
) -> list[str]:
    """
    Ask the LLM for follow-up questions.

    Malformed output degrades to an empty list. A failed call raises
    UpstreamError so the request fails as a whole.
    """
    if llm.is_mock and hasattr(llm, "mock_related_questions"):
        return llm.mock_related_questions(query, records)

    prompt = suggest_system_prompt.format(
        count=count,
        context="\n".join(r.page_content for r in records),
        query=query
    )
    try:
        raw = llm.complete_json(f"関連質問を{count}つ生成してください。", system_prompt=prompt)
        return parse_question_list(raw)[:count]
    except UpstreamError:
        raise
    except ValueError as e:
        # Includes json.JSONDecodeError from complete_json
        logger.warning(f"Could not parse related questions: {e}")
        return []
    except Exception as e:
        raise UpstreamError(f"Related question generation failed: {e}") from e


def merge_related_questions(
    query: str,
    *sources: list[str],
    max_questions: int = DEFAULT_MAX_QUESTIONS
) -> list[str]:
    """Merge question lists in priority order, dropping duplicates and the query."""
    merged: list[str] = []
    for questions in sources:
        for question in questions:
            if question == query or question in merged:
                continue
            merged.append(question)
            if len(merged) >= max_questions:
                return merged
    return merged
