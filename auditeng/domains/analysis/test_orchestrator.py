"""
Tests for the analysis orchestrator lifecycle.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection

import numpy as np
import pytest

from auditeng.adapters.faiss import FAISSVectorStore
from auditeng.config.errors import ConflictError, NotFoundError, StorageError
from auditeng.domains.extraction.batch import BatchExtractor
from auditeng.domains.extraction.contracts import ExtractorSpec
from auditeng.domains.extraction.models import (
    DocumentImage,
    ExtractedField,
    ExtractionKind,
    ExtractionMetrics,
    ExtractionResult,
    FieldName,
    NormalizedExtraction,
)
from auditeng.domains.knowledge.models import ContentType
from auditeng.domains.knowledge.rag import RAGService
from auditeng.domains.rules.models import Verdict
from auditeng.domains.validation.dates import DateFormat
from auditeng.domains.validation.models import TestType

from .models import (
    Analysis,
    AnalysisRequest,
    AnalysisStatus,
    Feedback,
    FeedbackRequest,
    FeedbackType,
)
from .orchestrator import AnalysisOrchestrator, build_report_extraction, report_query_text

COMPANY = "acme-energia"
IMAGE = "https://storage.example.com/report-42/photo.jpg"


class InMemoryRepository:
    """Dict-backed AnalysisRepository with compare-and-set transitions."""

    def __init__(self) -> None:
        self.analyses: dict[str, Analysis] = {}
        self.feedback: dict[str, Feedback] = {}

    async def create_analysis(self, analysis: Analysis) -> None:
        self.analyses[analysis.id] = analysis

    async def get_analysis(self, analysis_id: str, company_id: str | None = None) -> Analysis | None:
        analysis = self.analyses.get(analysis_id)
        if analysis is None or (company_id is not None and analysis.company_id != company_id):
            return None
        return analysis

    async def transition(self, analysis: Analysis, expected: Collection[AnalysisStatus]) -> bool:
        current = self.analyses.get(analysis.id)
        if current is None or current.status not in expected:
            return False
        self.analyses[analysis.id] = analysis
        return True

    async def list_analyses(self, company_id, status=None, test_type=None, limit=100, offset=0) -> list[Analysis]:
        rows = [
            a
            for a in self.analyses.values()
            if a.company_id == company_id
            and (status is None or a.status == status)
            and (test_type is None or a.test_type == test_type)
        ]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return rows[offset : offset + limit]

    async def create_feedback(self, feedback: Feedback) -> None:
        self.feedback[feedback.id] = feedback

    async def get_feedback(self, feedback_id: str) -> Feedback | None:
        return self.feedback.get(feedback_id)

    async def list_feedback(self, analysis_id: str) -> list[Feedback]:
        return [f for f in self.feedback.values() if f.analysis_id == analysis_id]

    async def mark_feedback_incorporated(self, feedback_id: str) -> bool:
        feedback = self.feedback.get(feedback_id)
        if feedback is None:
            return False
        self.feedback[feedback_id] = feedback.model_copy(update={"incorporated": True})
        return True


class FlakyRepository(InMemoryRepository):
    """Fails when storing a completed analysis."""

    async def transition(self, analysis: Analysis, expected: Collection[AnalysisStatus]) -> bool:
        if analysis.status is AnalysisStatus.COMPLETED:
            raise StorageError("disk full")
        return await super().transition(analysis, expected)


class FakeVisionClient:
    """Extractor returning a fixed photo tag; optionally blocks until released."""

    def __init__(self, tag: str = "PDU-A-01", blocking: bool = False) -> None:
        self.tag = tag
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        if not blocking:
            self.release.set()
        self.calls = 0
        self.contexts: list[object] = []

    async def extract(self, spec: ExtractorSpec) -> ExtractionResult:
        self.calls += 1
        self.contexts.append(spec.context)  # type: ignore[attr-defined]
        self.started.set()
        await self.release.wait()
        field = ExtractedField(value=self.tag, confidence=0.9, source=spec.source)
        return ExtractionResult(
            success=True,
            data=NormalizedExtraction(source=spec.source, fields={FieldName.EQUIPMENT_TAG.value: field}),
            metrics=ExtractionMetrics(total_tokens=1200, estimated_cost=0.02),
        )


class UnitEmbedder:
    async def embed(self, text: str) -> np.ndarray:
        return np.array([1.0, 0.0, 0.0, 0.0], dtype="float32")


class FailingEmbedder:
    async def embed(self, text: str) -> np.ndarray:
        raise RuntimeError("embedding service down")


def _request(resistance: float = 3.2, **overrides: object) -> AnalysisRequest:
    fields = {
        FieldName.EQUIPMENT_TAG.value: "PDU-A-01",
        FieldName.GROUND_RESISTANCE.value: resistance,
        FieldName.PHOTO_WATERMARK.value: True,
        FieldName.TECHNICIAN_SIGNATURE.value: True,
        FieldName.MEASUREMENT_DATE.value: "2024-03-10",
        FieldName.CALIBRATION_EXPIRY_DATE.value: "2025-01-31",
    }
    fields.update(overrides)
    return AnalysisRequest(
        company_id=COMPANY,
        test_type=TestType.GROUNDING,
        filename="grounding-report.pdf",
        images=[DocumentImage(image=IMAGE, kind=ExtractionKind.VISIBLE, page_number=1)],
        report_fields=fields,
        expected_tag="PDU-A-01",
    )


def _orchestrator(
    client: FakeVisionClient | None = None,
    repo: InMemoryRepository | None = None,
    rag: RAGService | None = None,
) -> tuple[AnalysisOrchestrator, InMemoryRepository, FakeVisionClient]:
    client = client or FakeVisionClient()
    repo = repo or InMemoryRepository()
    return AnalysisOrchestrator(repo, BatchExtractor(client), rag=rag), repo, client


# --- Helper Tests ---


def test_build_report_extraction_skips_missing() -> None:
    """Test report values become full-confidence fields; None is skipped."""
    extraction = build_report_extraction({"ground_resistance": 3.2, "table_tag": None})

    field = extraction.get(FieldName.GROUND_RESISTANCE)
    assert field.value == 3.2
    assert field.confidence == 1.0
    assert field.source == "report"
    assert "table_tag" not in extraction.fields


def test_report_query_text_includes_tag() -> None:
    """Test retrieval query leads with the expected tag."""
    text = report_query_text(_request())
    assert text.startswith("equipment_tag: PDU-A-01")
    assert "ground_resistance: 3.2" in text


# --- Processing Tests ---


async def test_create_and_process_approved() -> None:
    """Test a clean grounding report completes as APPROVED."""
    orchestrator, repo, client = _orchestrator()

    analysis_id = await orchestrator.create_and_process(_request())
    analysis = await orchestrator.wait(analysis_id)

    assert analysis.status is AnalysisStatus.COMPLETED
    assert analysis.verdict is Verdict.APPROVED
    assert analysis.non_conformities == []
    assert analysis.score is not None and analysis.score >= 90
    assert analysis.tokens_consumed == 1200
    assert analysis.completed_at is not None
    assert client.calls == 1


async def test_high_resistance_rejected() -> None:
    """Test ground resistance over the limit rejects the report."""
    orchestrator, _, _ = _orchestrator()

    analysis = await orchestrator.wait(await orchestrator.create_and_process(_request(resistance=6.2)))

    assert analysis.verdict is Verdict.REJECTED
    assert [nc.code for nc in analysis.non_conformities] == ["GND-001"]
    assert analysis.score is not None and analysis.score <= 59


async def test_tag_mismatch_between_report_and_photo() -> None:
    """Test a photo tag differing from the report tag is a critical finding."""
    orchestrator, _, _ = _orchestrator(client=FakeVisionClient(tag="PDU-B-02"))

    analysis = await orchestrator.wait(await orchestrator.create_and_process(_request()))

    assert analysis.verdict is Verdict.REJECTED
    assert "TAG-001" in [nc.code for nc in analysis.non_conformities]


async def test_date_format_default_and_request_override() -> None:
    """Test slashed report dates follow the orchestrator format unless the request sets one."""
    repo = InMemoryRepository()
    orchestrator = AnalysisOrchestrator(repo, BatchExtractor(FakeVisionClient()), date_format=DateFormat.MDY)
    dates = {
        FieldName.MEASUREMENT_DATE.value: "05/03/2024",
        FieldName.CALIBRATION_EXPIRY_DATE.value: "2024-04-01",
    }

    # May 3rd month first: certificate already expired
    month_first = await orchestrator.wait(await orchestrator.create_and_process(_request(**dates)))
    # March 5th day first: certificate still valid
    day_first_request = _request(**dates).model_copy(update={"date_format": DateFormat.DMY})
    day_first = await orchestrator.wait(await orchestrator.create_and_process(day_first_request))

    assert month_first.verdict is Verdict.REJECTED
    assert [nc.code for nc in month_first.non_conformities] == ["CERT-001"]
    assert day_first.verdict is Verdict.APPROVED


async def test_store_failure_marks_failed() -> None:
    """Test a failed completion write leaves the analysis FAILED."""
    orchestrator, repo, _ = _orchestrator(repo=FlakyRepository())

    analysis = await orchestrator.wait(await orchestrator.create_and_process(_request()))

    assert analysis.status is AnalysisStatus.FAILED
    assert "disk full" in (analysis.error_message or "")
    assert analysis.verdict is None


async def test_indexing_failure_keeps_completed() -> None:
    """Test knowledge indexing errors never fail the analysis."""
    rag = RAGService(FailingEmbedder(), FAISSVectorStore(dimension=4))
    orchestrator, _, _ = _orchestrator(rag=rag)

    analysis = await orchestrator.wait(await orchestrator.create_and_process(_request()))
    await orchestrator.drain()

    assert analysis.status is AnalysisStatus.COMPLETED
    assert analysis.verdict is Verdict.APPROVED


async def test_completed_analysis_is_indexed() -> None:
    """Test completion adds the analysis to the knowledge index."""
    store = FAISSVectorStore(dimension=4)
    orchestrator, _, _ = _orchestrator(rag=RAGService(UnitEmbedder(), store))

    analysis_id = await orchestrator.create_and_process(_request())
    await orchestrator.wait(analysis_id)
    await orchestrator.drain()

    records = [r for r in store.entries() if r.get("analysis_id") == analysis_id]
    assert len(records) == 1
    assert records[0]["content_type"] == ContentType.ANALYSIS_RESULT.value
    assert records[0]["company_id"] == COMPANY


async def test_retrieved_context_reaches_extractor() -> None:
    """Test past analyses are layered onto the next extraction prompt."""
    store = FAISSVectorStore(dimension=4)
    orchestrator, _, client = _orchestrator(rag=RAGService(UnitEmbedder(), store))

    await orchestrator.wait(await orchestrator.create_and_process(_request()))
    await orchestrator.wait(await orchestrator.create_and_process(_request()))
    await orchestrator.drain()

    assert client.contexts[0].is_empty  # type: ignore[attr-defined]
    assert not client.contexts[1].is_empty  # type: ignore[attr-defined]


# --- Cancel Tests ---


async def test_cancel_during_processing_is_never_completed() -> None:
    """Test a cancelled analysis is not overwritten when extraction finishes."""
    orchestrator, repo, client = _orchestrator(client=FakeVisionClient(blocking=True))

    analysis_id = await orchestrator.create_and_process(_request())
    await client.started.wait()

    cancelled = await orchestrator.cancel(analysis_id, COMPANY)
    assert cancelled.status is AnalysisStatus.CANCELLED

    client.release.set()
    analysis = await orchestrator.wait(analysis_id)

    assert analysis.status is AnalysisStatus.CANCELLED
    assert analysis.verdict is None
    assert analysis.non_conformities == []


async def test_cancel_completed_conflicts() -> None:
    """Test finished analyses cannot be cancelled."""
    orchestrator, _, _ = _orchestrator()
    analysis_id = await orchestrator.create_and_process(_request())
    await orchestrator.wait(analysis_id)

    with pytest.raises(ConflictError):
        await orchestrator.cancel(analysis_id)


async def test_cancel_unknown_not_found() -> None:
    """Test cancelling an unknown analysis raises NotFoundError."""
    orchestrator, _, _ = _orchestrator()
    with pytest.raises(NotFoundError):
        await orchestrator.cancel("missing")


# --- Reanalyze Tests ---


async def test_reanalyze_in_flight_conflicts() -> None:
    """Test reanalyze is refused while processing."""
    orchestrator, _, client = _orchestrator(client=FakeVisionClient(blocking=True))
    analysis_id = await orchestrator.create_and_process(_request())
    await client.started.wait()

    with pytest.raises(ConflictError):
        await orchestrator.reanalyze(analysis_id)

    client.release.set()
    await orchestrator.drain()


async def test_reanalyze_while_cancelled_unit_still_running_conflicts() -> None:
    """Test reanalyze waits for the previous unit even after cancel."""
    orchestrator, _, client = _orchestrator(client=FakeVisionClient(blocking=True))
    analysis_id = await orchestrator.create_and_process(_request())
    await client.started.wait()
    await orchestrator.cancel(analysis_id)

    with pytest.raises(ConflictError):
        await orchestrator.reanalyze(analysis_id)

    client.release.set()
    await orchestrator.drain()


async def test_reanalyze_completed_runs_again() -> None:
    """Test reanalyze resets and reprocesses a finished analysis."""
    orchestrator, repo, client = _orchestrator()
    analysis_id = await orchestrator.create_and_process(_request())
    await orchestrator.wait(analysis_id)

    reset = await orchestrator.reanalyze(analysis_id, COMPANY)
    assert reset.status is AnalysisStatus.PENDING
    assert reset.verdict is None
    assert reset.completed_at is None

    analysis = await orchestrator.wait(analysis_id)
    assert analysis.status is AnalysisStatus.COMPLETED
    assert client.calls == 2


async def test_reanalyze_failed_analysis() -> None:
    """Test a FAILED analysis can be reanalyzed and its error cleared."""
    repo = FlakyRepository()
    orchestrator, _, _ = _orchestrator(repo=repo)
    analysis_id = await orchestrator.create_and_process(_request())
    await orchestrator.wait(analysis_id)

    reset = await orchestrator.reanalyze(analysis_id)
    assert reset.error_message is None
    await orchestrator.drain()


# --- Query Tests ---


async def test_get_analysis_other_tenant_not_found() -> None:
    """Test tenants cannot read each other's analyses."""
    orchestrator, _, _ = _orchestrator()
    analysis_id = await orchestrator.create_and_process(_request())
    await orchestrator.wait(analysis_id)

    with pytest.raises(NotFoundError):
        await orchestrator.get_analysis(analysis_id, "other-company")


async def test_list_analyses_by_status() -> None:
    """Test listing filters by status."""
    orchestrator, _, _ = _orchestrator()
    analysis_id = await orchestrator.create_and_process(_request())
    await orchestrator.wait(analysis_id)

    completed = await orchestrator.list_analyses(COMPANY, status=AnalysisStatus.COMPLETED)
    pending = await orchestrator.list_analyses(COMPANY, status=AnalysisStatus.PENDING)

    assert [a.id for a in completed] == [analysis_id]
    assert pending == []


# --- Feedback Tests ---


async def test_feedback_requires_completed() -> None:
    """Test feedback on an in-flight analysis is refused."""
    orchestrator, _, client = _orchestrator(client=FakeVisionClient(blocking=True))
    analysis_id = await orchestrator.create_and_process(_request())
    await client.started.wait()

    with pytest.raises(ConflictError):
        await orchestrator.submit_feedback(
            analysis_id, FeedbackRequest(feedback_type=FeedbackType.FIELD_CORRECTION)
        )

    client.release.set()
    await orchestrator.drain()


async def test_verdict_feedback_indexed_and_incorporated() -> None:
    """Test verdict corrections are indexed and demote the original result."""
    store = FAISSVectorStore(dimension=4)
    orchestrator, repo, _ = _orchestrator(rag=RAGService(UnitEmbedder(), store))
    analysis_id = await orchestrator.create_and_process(_request())
    await orchestrator.wait(analysis_id)

    feedback = await orchestrator.submit_feedback(
        analysis_id,
        FeedbackRequest(
            feedback_type=FeedbackType.VERDICT_CORRECTION,
            original_value="APPROVED",
            corrected_value="REJECTED",
            explanation="Photo watermark is from another site",
            user_id="auditor-7",
        ),
        COMPANY,
    )
    await orchestrator.drain()

    stored = await repo.get_feedback(feedback.id)
    assert stored is not None and stored.incorporated is True

    records = [r for r in store.entries() if r.get("analysis_id") == analysis_id]
    by_type = {r["content_type"]: r for r in records}
    assert by_type[ContentType.ANALYSIS_RESULT.value]["was_correct"] is False
    assert ContentType.MANUAL_CORRECTION.value in by_type


async def test_feedback_without_rag_not_incorporated() -> None:
    """Test feedback is stored even when loop learning is disabled."""
    orchestrator, repo, _ = _orchestrator()
    analysis_id = await orchestrator.create_and_process(_request())
    await orchestrator.wait(analysis_id)

    feedback = await orchestrator.submit_feedback(
        analysis_id, FeedbackRequest(feedback_type=FeedbackType.FALSE_POSITIVE)
    )
    await orchestrator.drain()

    assert (await repo.get_feedback(feedback.id)).incorporated is False  # type: ignore[union-attr]
    assert len(await repo.list_feedback(analysis_id)) == 1
