"""
Shared fixtures and fakes for the test suite.
"""

import json
from pathlib import Path

import pytest

from parkride_qa.errors import UpstreamError
from parkride_qa.llm_client import LLMProvider, strip_code_fence
from parkride_qa.pipeline.adjacency import TagAdjacencyTable, default_tag_adjacency
from parkride_qa.pipeline.context import classify
from parkride_qa.schemas import KnowledgeRecord, SearchHit


def make_record(record_id: str, question: str, tags: list[str], answer: str | None = None, **kwargs) -> KnowledgeRecord:
    return KnowledgeRecord(
        id=record_id,
        question=question,
        answer=answer or f"{question}への回答です。",
        tags=tags,
        **kwargs
    )


def make_hit(record: KnowledgeRecord, score: float = 0.9) -> SearchHit:
    return SearchHit(record=record, context=classify(record.tags), score=score)


class FakeRetriever:
    """In-memory stand-in for KnowledgeRetriever. Returns the same ranked records for every query."""

    def __init__(self, records: list[KnowledgeRecord]):
        self.records = list(records)
        self.queries: list[tuple[str, int | None]] = []

    def similarity_search(self, query: str, k: int | None = None) -> list[SearchHit]:
        self.queries.append((query, k))
        ranked = self.records[:k] if k else self.records
        return [make_hit(r, score=1.0 - i * 0.05) for i, r in enumerate(ranked)]

    def list_records(self, limit: int | None = None) -> list[KnowledgeRecord]:
        return self.records[:limit] if limit else list(self.records)

    def replace_records(self, records: list[KnowledgeRecord]) -> int:
        self.records = list(records)
        return len(records)


class FakeLLM(LLMProvider):
    """Scripted LLM: answers with a fixed text and suggests fixed questions."""

    def __init__(self, answer: str = "ご回答です。", suggestions: str = '["駐車場の場所はどこですか？"]'):
        self.answer = answer
        self.suggestions = suggestions
        self.calls: list[tuple[str, str]] = []

    @property
    def is_mock(self) -> bool:
        return False

    def complete(self, prompt: str, system_prompt: str = "") -> str:
        self.calls.append((prompt, system_prompt))
        if "関連質問" in prompt:
            return self.suggestions
        return self.answer

    def complete_json(self, prompt: str, system_prompt: str = ""):
        return json.loads(strip_code_fence(self.complete(prompt, system_prompt)))


class FailingLLM(FakeLLM):
    """LLM whose calls always fail upstream."""

    def complete(self, prompt: str, system_prompt: str = "") -> str:
        raise UpstreamError("quota exceeded")


@pytest.fixture
def table() -> TagAdjacencyTable:
    return TagAdjacencyTable(default_tag_adjacency)


@pytest.fixture
def reservation_records() -> list[KnowledgeRecord]:
    """Records in the order a search for the reservation question returns them."""
    return [
        make_record("1", "予約方法を教えてください", ["予約方法", "インターネット予約"]),
        make_record("2", "電話で予約できますか？", ["web予約限定"]),
        make_record("3", "外車は駐車できますか？", ["車種制限"]),
        make_record("4", "軽自動車の予約枠はありますか？", ["電話問い合わせ", "軽自動車枠"]),
    ]


@pytest.fixture
def knowledge_csv_path() -> Path:
    return Path(__file__).parent.parent / "data" / "knowledge.csv"
