"""
Rules Models - Data types for compliance evaluation.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from auditeng.domains.validation.models import Severity


class Verdict(str, Enum):
    """Final compliance decision, always derived from the non-conformities."""

    APPROVED = "APPROVED"
    APPROVED_WITH_COMMENTS = "APPROVED_WITH_COMMENTS"
    REJECTED = "REJECTED"


class NonConformity(BaseModel):
    """A documented rule violation or cross-source inconsistency."""

    code: str
    severity: Severity
    description: str
    evidence: str = ""
    corrective_action: str = ""

    model_config = {"frozen": True}


class RuleEvaluation(BaseModel):
    """Rules engine output for one report."""

    non_conformities: list[NonConformity] = Field(default_factory=list)
    verdict: Verdict
    score: int = Field(..., ge=0, le=100)

    @property
    def codes(self) -> list[str]:
        return [nc.code for nc in self.non_conformities]

    def count(self, severity: Severity) -> int:
        return sum(1 for nc in self.non_conformities if nc.severity == severity)
