"""
Analysis Contracts - Interfaces for analysis persistence.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Protocol, runtime_checkable

from auditeng.domains.validation.models import TestType

from .models import Analysis, AnalysisStatus, Feedback


@runtime_checkable
class AnalysisRepository(Protocol):
    """Contract for tenant-scoped analysis and feedback storage."""

    async def create_analysis(self, analysis: Analysis) -> None:
        """Insert a new analysis."""
        ...

    async def get_analysis(self, analysis_id: str, company_id: str | None = None) -> Analysis | None:
        """Get an analysis, optionally restricted to one tenant."""
        ...

    async def transition(self, analysis: Analysis, expected: Collection[AnalysisStatus]) -> bool:
        """
        Compare-and-set write.

        Stores the whole record only if the current status is one of
        ``expected``; returns False otherwise.
        """
        ...

    async def list_analyses(
        self,
        company_id: str,
        status: AnalysisStatus | None = None,
        test_type: TestType | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Analysis]:
        """List a tenant's analyses, newest first."""
        ...

    async def create_feedback(self, feedback: Feedback) -> None:
        """Insert a feedback record."""
        ...

    async def get_feedback(self, feedback_id: str) -> Feedback | None:
        """Get feedback by id."""
        ...

    async def list_feedback(self, analysis_id: str) -> list[Feedback]:
        """Feedback for one analysis, oldest first."""
        ...

    async def mark_feedback_incorporated(self, feedback_id: str) -> bool:
        """Flag feedback as folded into the knowledge index."""
        ...
