"""
Rules Domain - Deterministic compliance verdicts.

This domain handles:
- Universal calibration checks
- Grounding, megger and thermography rule sets
- Folding validator inconsistencies into non-conformities
- Verdict derivation and banded scoring
"""

from .engine import (
    PHASE_COMBINATIONS,
    SCORE_BANDS,
    calculate_score,
    derive_verdict,
    evaluate,
    inconsistency_to_non_conformity,
)
from .models import NonConformity, RuleEvaluation, Verdict

__all__ = [
    # Models
    "NonConformity",
    "RuleEvaluation",
    "Verdict",
    # Engine
    "PHASE_COMBINATIONS",
    "SCORE_BANDS",
    "calculate_score",
    "derive_verdict",
    "evaluate",
    "inconsistency_to_non_conformity",
]
