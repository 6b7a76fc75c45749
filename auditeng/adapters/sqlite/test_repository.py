"""Tests for SQLite analysis repository."""

from datetime import timedelta
from pathlib import Path

import pytest

from auditeng.domains.analysis.models import (
    ACTIVE_STATUSES,
    Analysis,
    AnalysisRequest,
    AnalysisStatus,
    Feedback,
    FeedbackType,
)
from auditeng.domains.extraction.models import ExtractedField, NormalizedExtraction
from auditeng.domains.rules.models import NonConformity, Verdict
from auditeng.domains.validation.models import Severity, TestType

from .repository import SQLiteAnalysisRepository


@pytest.fixture
async def repo(tmp_path: Path):
    """Create a test repository with temporary database."""
    repo = SQLiteAnalysisRepository(tmp_path / "test.db")
    await repo.initialize()
    yield repo
    await repo.close()


def _analysis(analysis_id: str = "an-1", company_id: str = "acme", **changes) -> Analysis:
    request = AnalysisRequest(
        company_id=company_id,
        test_type=TestType.GROUNDING,
        filename="report.pdf",
        report_fields={"ground_resistance": 6.2},
    )
    analysis = Analysis(id=analysis_id, company_id=company_id, test_type=TestType.GROUNDING, request=request)
    return analysis.with_changes(**changes) if changes else analysis


def _completed(analysis: Analysis) -> Analysis:
    return analysis.with_changes(
        status=AnalysisStatus.COMPLETED,
        extraction=NormalizedExtraction(
            source="merged",
            fields={"ground_resistance": ExtractedField(value=6.2, confidence=1.0, source="report")},
        ),
        non_conformities=[
            NonConformity(code="GND-001", severity=Severity.CRITICAL, description="Ground resistance 6.2 ohm")
        ],
        verdict=Verdict.REJECTED,
        score=45,
        confidence=1.0,
    )


async def test_initialize_creates_tables(repo: SQLiteAnalysisRepository):
    """Test that initialize creates all required tables."""
    conn = await repo._get_connection()
    cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    tables = {row[0] for row in await cursor.fetchall()}

    assert "analyses" in tables
    assert "feedback" in tables


async def test_create_and_get_analysis(repo: SQLiteAnalysisRepository):
    """Test inserting and retrieving an analysis."""
    await repo.create_analysis(_analysis())

    analysis = await repo.get_analysis("an-1")
    assert analysis is not None
    assert analysis.status is AnalysisStatus.PENDING
    assert analysis.request.report_fields == {"ground_resistance": 6.2}
    assert analysis.verdict is None


async def test_get_analysis_scoped_to_tenant(repo: SQLiteAnalysisRepository):
    """Test another tenant cannot read the analysis."""
    await repo.create_analysis(_analysis())

    assert await repo.get_analysis("an-1", "acme") is not None
    assert await repo.get_analysis("an-1", "other") is None


async def test_get_missing_analysis(repo: SQLiteAnalysisRepository):
    """Test unknown ids return None."""
    assert await repo.get_analysis("missing") is None


async def test_transition_round_trips_completed(repo: SQLiteAnalysisRepository):
    """Test a completed record is stored whole."""
    pending = _analysis()
    await repo.create_analysis(pending)
    processing = pending.with_changes(status=AnalysisStatus.PROCESSING)
    assert await repo.transition(processing, {AnalysisStatus.PENDING}) is True

    assert await repo.transition(_completed(processing), {AnalysisStatus.PROCESSING}) is True

    stored = await repo.get_analysis("an-1")
    assert stored is not None
    assert stored.verdict is Verdict.REJECTED
    assert stored.score == 45
    assert [nc.code for nc in stored.non_conformities] == ["GND-001"]
    assert stored.extraction is not None
    assert stored.extraction.value("ground_resistance") == 6.2


async def test_transition_refused_on_status_mismatch(repo: SQLiteAnalysisRepository):
    """Test compare-and-set refuses when the stored status moved on."""
    pending = _analysis()
    await repo.create_analysis(pending)
    cancelled = pending.with_changes(status=AnalysisStatus.CANCELLED)
    assert await repo.transition(cancelled, ACTIVE_STATUSES) is True

    completed = _completed(pending.with_changes(status=AnalysisStatus.PROCESSING))
    assert await repo.transition(completed, {AnalysisStatus.PROCESSING}) is False

    stored = await repo.get_analysis("an-1")
    assert stored is not None
    assert stored.status is AnalysisStatus.CANCELLED
    assert stored.verdict is None


async def test_transition_empty_expected(repo: SQLiteAnalysisRepository):
    """Test an empty expected set never matches."""
    pending = _analysis()
    await repo.create_analysis(pending)
    assert await repo.transition(pending.with_changes(status=AnalysisStatus.PROCESSING), set()) is False


async def test_list_analyses_filters_and_orders(repo: SQLiteAnalysisRepository):
    """Test listing is tenant-scoped, filtered and newest first."""
    first = _analysis("an-1")
    second = _analysis("an-2", created_at=first.created_at + timedelta(seconds=5))
    await repo.create_analysis(first)
    await repo.create_analysis(second)
    await repo.create_analysis(_analysis("an-3", company_id="other"))

    listed = await repo.list_analyses("acme")
    assert [a.id for a in listed] == ["an-2", "an-1"]

    assert await repo.list_analyses("acme", status=AnalysisStatus.COMPLETED) == []
    assert len(await repo.list_analyses("acme", test_type=TestType.GROUNDING)) == 2
    assert [a.id for a in await repo.list_analyses("acme", limit=1, offset=1)] == ["an-1"]
    assert await repo.count_analyses("acme") == 2


async def test_feedback_round_trip(repo: SQLiteAnalysisRepository):
    """Test feedback storage and incorporation flag."""
    await repo.create_analysis(_analysis())
    feedback = Feedback(
        id="fb-1",
        analysis_id="an-1",
        company_id="acme",
        user_id="auditor-7",
        feedback_type=FeedbackType.VERDICT_CORRECTION,
        original_value="REJECTED",
        corrected_value={"verdict": "APPROVED_WITH_COMMENTS"},
        explanation="Resistance was measured on the wrong rod",
    )
    await repo.create_feedback(feedback)

    stored = await repo.get_feedback("fb-1")
    assert stored is not None
    assert stored.corrected_value == {"verdict": "APPROVED_WITH_COMMENTS"}
    assert stored.incorporated is False

    assert await repo.mark_feedback_incorporated("fb-1") is True
    assert (await repo.list_feedback("an-1"))[0].incorporated is True
    assert await repo.mark_feedback_incorporated("missing") is False
