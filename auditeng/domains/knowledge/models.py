"""
Knowledge Models - Data types for the RAG knowledge index.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from auditeng.domains.rules.models import Verdict
from auditeng.domains.validation.models import TestType


class ContentType(str, Enum):
    """Kinds of knowledge stored in the index."""

    ANALYSIS_RESULT = "ANALYSIS_RESULT"  # Completed analysis summary
    MANUAL_CORRECTION = "MANUAL_CORRECTION"  # User feedback
    TECHNICAL_STANDARD = "TECHNICAL_STANDARD"  # NBR, IEEE, NETA
    BEST_PRACTICE = "BEST_PRACTICE"  # Guidelines and validation rules


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeEmbedding(BaseModel):
    """
    One knowledge entry.

    The vector lives in the vector store; this record is stored as its
    metadata. Entries are append-only: only use_count and was_correct
    change after insertion.
    """

    id: str | None = None
    company_id: str | None = None  # None = global, visible to every tenant
    analysis_id: str | None = None
    content_type: ContentType
    test_type: TestType | None = None
    verdict: Verdict | None = None
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    was_correct: bool = True
    use_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)

    def to_record(self) -> dict[str, Any]:
        """Serialize for vector store metadata."""
        record = self.model_dump(mode="json")
        if record["id"] is None:
            del record["id"]
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> KnowledgeEmbedding:
        return cls.model_validate(record)


class SearchFilters(BaseModel):
    """Filters for knowledge search; unset limits fall back to RAGConfig."""

    content_types: list[ContentType] | None = None
    test_type: TestType | None = None
    verdict: Verdict | None = None
    company_id: str | None = None
    limit: int | None = Field(default=None, ge=1)
    min_similarity: float | None = Field(default=None, ge=-1.0, le=1.0)
    include_incorrect: bool = False

    model_config = {"frozen": True}

    def matches(self, record: dict[str, Any]) -> bool:
        """Check a stored record against the filters and tenant visibility."""
        owner = record.get("company_id")
        if owner is not None and owner != self.company_id:
            return False
        if self.content_types and record.get("content_type") not in {c.value for c in self.content_types}:
            return False
        if self.test_type and record.get("test_type") != self.test_type.value:
            return False
        if self.verdict and record.get("verdict") != self.verdict.value:
            return False
        if not self.include_incorrect and record.get("was_correct") is False:
            return False
        return True


class SearchResult(BaseModel):
    """Single knowledge search hit."""

    id: str
    content: str
    content_type: ContentType
    test_type: TestType | None = None
    verdict: Verdict | None = None
    similarity: float
    metadata: dict[str, Any] = Field(default_factory=dict)
    analysis_id: str | None = None
    company_id: str | None = None


class RAGContext(BaseModel):
    """Retrieved context for one analysis, trimmed to a token budget."""

    similar_analyses: list[SearchResult] = Field(default_factory=list)
    corrections: list[SearchResult] = Field(default_factory=list)
    standards: list[SearchResult] = Field(default_factory=list)
    total_tokens: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.similar_analyses or self.corrections or self.standards)

    @property
    def embedding_ids(self) -> list[str]:
        return [r.id for r in (*self.similar_analyses, *self.corrections, *self.standards)]


class IndexResult(BaseModel):
    """Outcome of an indexing operation."""

    success: bool
    embedding_id: str | None = None
    embedding_ids: list[str] = Field(default_factory=list)
    error: str | None = None


class RAGConfig(BaseModel):
    """Configuration for search and context building."""

    default_limit: int = Field(default=5, ge=1)
    default_min_similarity: float = 0.7
    max_context_tokens: int = Field(default=4000, ge=0)
    max_similar_analyses: int = Field(default=3, ge=0)
    max_corrections: int = Field(default=2, ge=0)
    max_standards: int = Field(default=2, ge=0)
    analysis_min_similarity: float = 0.65
    correction_min_similarity: float = 0.60
    standard_min_similarity: float = 0.55

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, settings: Any) -> RAGConfig:
        """Build from application Settings."""
        return cls(
            default_limit=settings.rag_default_limit,
            default_min_similarity=settings.rag_default_min_similarity,
            max_context_tokens=settings.rag_max_context_tokens,
            max_similar_analyses=settings.rag_max_similar_analyses,
            max_corrections=settings.rag_max_corrections,
            max_standards=settings.rag_max_standards,
            analysis_min_similarity=settings.rag_analysis_min_similarity,
            correction_min_similarity=settings.rag_correction_min_similarity,
            standard_min_similarity=settings.rag_standard_min_similarity,
        )
