"""
Analysis Models - Lifecycle records owned by the orchestrator.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from auditeng.domains.extraction.models import DocumentImage, NormalizedExtraction
from auditeng.domains.rules.engine import derive_verdict
from auditeng.domains.rules.models import NonConformity, Verdict
from auditeng.domains.validation.dates import DateFormat
from auditeng.domains.validation.models import TestType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisStatus(str, Enum):
    """
    Analysis lifecycle.

    PENDING -> PROCESSING -> COMPLETED | FAILED
    PENDING | PROCESSING -> CANCELLED
    COMPLETED | FAILED | CANCELLED -> PENDING (reanalyze)
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_STATUSES = frozenset({AnalysisStatus.PENDING, AnalysisStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({AnalysisStatus.COMPLETED, AnalysisStatus.FAILED, AnalysisStatus.CANCELLED})


class FeedbackType(str, Enum):
    VERDICT_CORRECTION = "VERDICT_CORRECTION"  # Verdict was wrong
    FIELD_CORRECTION = "FIELD_CORRECTION"  # Extracted field was wrong
    FALSE_POSITIVE = "FALSE_POSITIVE"  # Flagged issue that was not one
    FALSE_NEGATIVE = "FALSE_NEGATIVE"  # Missed issue


class AnalysisRequest(BaseModel):
    """
    Input for one report analysis.

    report_fields holds values already read from the report body
    (measurement date, header tag and serial, tabulated measurements,
    signature and watermark presence), keyed by FieldName value.
    """

    company_id: str = Field(..., min_length=1)
    test_type: TestType
    filename: str | None = None
    images: list[DocumentImage] = Field(default_factory=list)
    report_fields: dict[str, Any] = Field(default_factory=dict)
    expected_tag: str | None = None
    expected_serial: str | None = None
    date_format: DateFormat | None = None  # None: orchestrator default

    model_config = {"frozen": True}


class Analysis(BaseModel):
    """
    One analysis record.

    Verdict and non-conformities exist only on COMPLETED analyses, and the
    verdict always matches the non-conformity list.
    """

    id: str
    company_id: str
    test_type: TestType
    status: AnalysisStatus = AnalysisStatus.PENDING
    request: AnalysisRequest
    extraction: NormalizedExtraction | None = None
    non_conformities: list[NonConformity] = Field(default_factory=list)
    verdict: Verdict | None = None
    score: int | None = Field(default=None, ge=0, le=100)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    tokens_consumed: int = 0
    cost: float = 0.0
    processing_ms: float | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def _verdict_only_when_completed(self) -> Analysis:
        if self.status is AnalysisStatus.COMPLETED:
            if self.verdict is None:
                raise ValueError("completed analysis requires a verdict")
            expected = derive_verdict(self.non_conformities)
            if self.verdict is not expected:
                raise ValueError(f"verdict {self.verdict.value} does not match non-conformities ({expected.value})")
        elif self.verdict is not None or self.non_conformities:
            raise ValueError(f"{self.status.value} analysis cannot carry a verdict or non-conformities")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def with_changes(self, **changes: Any) -> Analysis:
        """Validated copy with the given fields replaced."""
        return Analysis.model_validate({**self.model_dump(), **changes})


class FeedbackRequest(BaseModel):
    """User correction of a completed analysis."""

    feedback_type: FeedbackType
    original_value: Any = None
    corrected_value: Any = None
    explanation: str | None = None
    user_id: str | None = None


class Feedback(BaseModel):
    """Stored feedback record."""

    id: str
    analysis_id: str
    company_id: str
    user_id: str | None = None
    feedback_type: FeedbackType
    original_value: Any = None
    corrected_value: Any = None
    explanation: str | None = None
    incorporated: bool = False
    created_at: datetime = Field(default_factory=utcnow)
