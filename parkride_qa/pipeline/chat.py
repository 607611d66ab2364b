"""
Chat pipeline: search, classify, answer and suggest follow-up questions.
"""

import asyncio

from ..llm_client import LLMProvider
from ..schemas import ChatResponse, SearchContext, SourceDocument
from ..utils import get_logger, truncate_text
from .adjacency import TagAdjacencyTable
from .answer import compose_answer, select_answer_sources
from .query import map_vehicle_query, validate_query
from .related import (
    DEFAULT_MAX_QUESTIONS, RELATED_CANDIDATE_K, SupportsSimilaritySearch,
    get_related_questions, merge_related_questions, suggest_related_questions
)

logger = get_logger("pipeline.chat")

SEARCH_K = 6
ANSWER_SOURCES = 4


async def answer_query(
    query: str,
    retriever: SupportsSimilaritySearch,
    llm: LLMProvider,
    table: TagAdjacencyTable,
    max_questions: int = DEFAULT_MAX_QUESTIONS,
    search_k: int = SEARCH_K,
    answer_sources: int = ANSWER_SOURCES,
    related_k: int = RELATED_CANDIDATE_K
) -> ChatResponse:
    """
    Answer a user query from the knowledge base.

    The answer, the LLM follow-up suggestions and the tag-based related
    questions are produced concurrently and joined before returning. An
    upstream failure in any of them fails the whole request.

    Args:
        query: User question
        retriever: Knowledge search handle
        llm: LLM provider instance
        table: Tag adjacency table
        max_questions: Maximum number of related questions
        search_k: Number of hits retrieved for the answer
        answer_sources: Number of hits passed to the answer prompt
        related_k: Candidate pool size for tag-based related questions

    Returns:
        ChatResponse with answer, sources and related questions
    """
    query = validate_query(query)
    search_query = map_vehicle_query(query)
    if search_query != query:
        logger.info(f"Mapped vehicle query to '{search_query}'")

    hits = await asyncio.to_thread(retriever.similarity_search, search_query, search_k)
    logger.info(f"Query '{truncate_text(query, 60)}' matched {len(hits)} records")

    sources = select_answer_sources(hits, limit=answer_sources)
    source_records = [hit.record for hit in sources]

    tasks = [
        asyncio.to_thread(compose_answer, query, source_records, llm),
        asyncio.to_thread(
            suggest_related_questions, query, [hit.record for hit in hits], llm, max_questions
        ),
    ]

    top = hits[0] if hits else None
    if top is not None and top.context != SearchContext.other_contexts:
        logger.debug(f"Top hit context: {top.context.value}, tags: {top.record.tags}")
        tasks.append(asyncio.to_thread(
            get_related_questions,
            retriever,
            top.record.question,
            list(top.record.tags),
            table,
            top.context,
            max_questions,
            related_k
        ))

    results = await asyncio.gather(*tasks)
    answer, suggested = results[0], results[1]
    tag_related = results[2] if len(results) > 2 else []

    related = merge_related_questions(query, tag_related, suggested, max_questions=max_questions)

    return ChatResponse(
        answer=answer,
        sources=[SourceDocument.from_hit(hit) for hit in sources],
        related_questions=related
    )
