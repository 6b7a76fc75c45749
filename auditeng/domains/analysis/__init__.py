"""
Analysis Domain - Report analysis lifecycle.

This domain handles:
- Creating analyses and processing them in the background
- Status transitions (cancel, reanalyze) with compare-and-set writes
- User feedback and its incorporation into the knowledge index
"""

from .contracts import AnalysisRepository
from .models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Analysis,
    AnalysisRequest,
    AnalysisStatus,
    Feedback,
    FeedbackRequest,
    FeedbackType,
)
from .orchestrator import AnalysisOrchestrator, build_report_extraction
from .tasks import AnalysisTaskRunner, CancellationToken

__all__ = [
    # Contracts
    "AnalysisRepository",
    # Models
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Analysis",
    "AnalysisRequest",
    "AnalysisStatus",
    "Feedback",
    "FeedbackRequest",
    "FeedbackType",
    # Implementations
    "AnalysisOrchestrator",
    "AnalysisTaskRunner",
    "CancellationToken",
    "build_report_extraction",
]
