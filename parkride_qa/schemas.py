"""
Pydantic schemas for knowledge records, search results and API payloads.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SearchContext(str, Enum):
    """Support topic a knowledge record belongs to."""
    default = "default"                      # 予約方法
    international_ng = "international_ng"    # 国際線制限
    vehicles_ng = "vehicles_ng"              # 車両制限
    reservation_rules = "reservation_rules"  # 予約変更ルール
    cancellation = "cancellation"            # キャンセル関連
    fee_rules = "fee_rules"                  # 料金関連
    other_contexts = "other_contexts"        # その他


class ChunkType(str, Enum):
    """Role of a record in the parent/child hierarchy."""
    parent = "parent"  # General rule
    child = "child"    # Detail under a parent rule


class KnowledgeRecord(BaseModel):
    """A single Q&A entry of the knowledge base."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique record identifier")
    question: str = Field(..., description="Question text")
    answer: str = Field(..., description="Answer text with escapes resolved")
    parent_id: Optional[str] = Field(default=None, description="Parent record ID for child entries")
    tags: list[str] = Field(default_factory=list, description="Lowercase tags, order preserved")
    priority: str = Field(default="", description="Display-only priority label")
    purpose: str = Field(default="", description="Display-only problem the entry solves")
    chunk_type: ChunkType = Field(default=ChunkType.parent, description="parent or child")

    @field_validator("question", "answer")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @property
    def page_content(self) -> str:
        """Text that is embedded in the vector index."""
        return f"質問: {self.question}\n回答: {self.answer}"


class SearchHit(BaseModel):
    """A knowledge record returned by similarity search."""
    record: KnowledgeRecord
    context: SearchContext = Field(..., description="Context classified from the record tags")
    score: float = Field(default=0.0, description="Relevance score from the vector index")


class ChatRequest(BaseModel):
    """Body of POST /chat."""
    query: Optional[str] = Field(default=None, description="User question")


class SourceDocument(BaseModel):
    """A knowledge entry used to build the answer."""
    question: str
    answer: str
    tags: list[str] = Field(default_factory=list)
    priority: str = ""
    purpose: str = ""
    context: SearchContext = SearchContext.other_contexts
    score: float = 0.0

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "SourceDocument":
        return cls(
            question=hit.record.question,
            answer=hit.record.answer,
            tags=list(hit.record.tags),
            priority=hit.record.priority,
            purpose=hit.record.purpose,
            context=hit.context,
            score=hit.score,
        )


class ChatResponse(BaseModel):
    """Answer, sources and follow-up questions for a chat query."""
    model_config = ConfigDict(populate_by_name=True)

    answer: str = Field(..., description="Generated answer passed through verbatim")
    sources: list[SourceDocument] = Field(default_factory=list, description="Knowledge entries used as context")
    related_questions: list[str] = Field(
        default_factory=list,
        alias="relatedQuestions",
        description="Follow-up questions, distinct and excluding the query"
    )


class UploadResult(BaseModel):
    """Result of POST /upload-knowledge."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    record_count: int = Field(..., alias="recordCount")
