"""Pipeline stages for answering knowledge base queries."""

from .context import classify
from .adjacency import TagAdjacencyTable, load_tag_adjacency
from .related import (
    select_related_questions,
    get_related_questions,
    suggest_related_questions,
    merge_related_questions,
)
from .answer import compose_answer, build_context_block, select_answer_sources
from .query import map_vehicle_query, validate_query
from .chat import answer_query

__all__ = [
    "classify",
    "TagAdjacencyTable",
    "load_tag_adjacency",
    "select_related_questions",
    "get_related_questions",
    "suggest_related_questions",
    "merge_related_questions",
    "compose_answer",
    "build_context_block",
    "select_answer_sources",
    "map_vehicle_query",
    "validate_query",
    "answer_query",
]
