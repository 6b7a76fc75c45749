"""
Analysis Orchestrator - Extraction, validation, rules and indexing per report.

Pipeline (one background unit per analysis):
1. PENDING -> PROCESSING (compare-and-set)
2. Retrieve prompt context from past analyses
3. Batch-extract the report images
4. Merge image fields with the report body
5. Cross-source validation, then the rules engine
6. PROCESSING -> COMPLETED (compare-and-set; a cancelled analysis is never overwritten)
7. Index the result for future prompts (failures only logged)

Any failure in steps 2-6 other than context retrieval marks the
analysis FAILED.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Coroutine
from enum import Enum
from typing import Any

from auditeng.config.errors import ConflictError, NotFoundError
from auditeng.domains.extraction.batch import BatchExtractor
from auditeng.domains.extraction.models import (
    ExtractedField,
    ExtractionHints,
    NormalizedExtraction,
    PromptContext,
)
from auditeng.domains.knowledge.prompt_enhancer import RAGPromptEnhancer
from auditeng.domains.knowledge.rag import RAGService
from auditeng.domains.rules.engine import evaluate
from auditeng.domains.validation.consistency import consolidate, validate
from auditeng.domains.validation.dates import DateFormat
from auditeng.domains.validation.models import TestType

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
    utcnow,
)
from .tasks import AnalysisTaskRunner, CancellationToken

logger = logging.getLogger(__name__)

__all__ = ["AnalysisOrchestrator", "build_report_extraction", "report_query_text"]

REPORT_SOURCE = "report"


def build_report_extraction(report_fields: dict[str, Any]) -> NormalizedExtraction:
    """
    Wrap values read from the report body as a full-confidence extraction.

    Example:
        >>> build_report_extraction({"ground_resistance": 3.2}).get("ground_resistance").source
        'report'
    """
    fields: dict[str, ExtractedField] = {}
    for name, value in report_fields.items():
        key = name.value if isinstance(name, Enum) else str(name)
        if value is None:
            continue
        fields[key] = ExtractedField(value=value, confidence=1.0, source=REPORT_SOURCE)
    return NormalizedExtraction(source=REPORT_SOURCE, fields=fields)


def report_query_text(request: AnalysisRequest) -> str:
    """Text describing a report for knowledge retrieval."""
    parts = [f"{name}: {value}" for name, value in request.report_fields.items() if value is not None]
    if request.expected_tag:
        parts.insert(0, f"equipment_tag: {request.expected_tag}")
    return "; ".join(parts)


class AnalysisOrchestrator:
    """
    Own the analysis lifecycle.

    Only the orchestrator writes analysis records; status changes go
    through compare-and-set so concurrent cancel and completion cannot
    both win.

    Example:
        >>> orchestrator = AnalysisOrchestrator(repo, BatchExtractor(client), rag=rag)
        >>> analysis_id = await orchestrator.create_and_process(request)
        >>> analysis = await orchestrator.wait(analysis_id)
        >>> analysis.verdict
        <Verdict.APPROVED: 'APPROVED'>
    """

    def __init__(
        self,
        repository: AnalysisRepository,
        extractor: BatchExtractor,
        rag: RAGService | None = None,
        enhancer: RAGPromptEnhancer | None = None,
        runner: AnalysisTaskRunner | None = None,
        date_format: DateFormat = DateFormat.DMY,
    ) -> None:
        """
        Initialize orchestrator.

        Args:
            repository: Analysis and feedback storage
            extractor: Batch extractor over the resilient client
            rag: Knowledge index for loop learning (disabled when None)
            enhancer: Prompt enhancer (built from rag when omitted)
            runner: Background task runner
            date_format: Day/month order of slashed dates when the request has none
        """
        self._repo = repository
        self._extractor = extractor
        self._rag = rag
        self._enhancer = enhancer or (RAGPromptEnhancer(rag) if rag is not None else None)
        self._runner = runner or AnalysisTaskRunner()
        self._date_format = date_format
        self._background: set[asyncio.Task[Any]] = set()

    # --- Public operations ---

    async def create_and_process(self, request: AnalysisRequest) -> str:
        """
        Create an analysis and schedule its processing.

        Returns:
            New analysis id (processing continues in the background)
        """
        analysis = Analysis(
            id=uuid.uuid4().hex,
            company_id=request.company_id,
            test_type=request.test_type,
            request=request,
        )
        await self._repo.create_analysis(analysis)
        logger.info(
            "Created %s analysis %s for company %s (%d images)",
            request.test_type.value,
            analysis.id,
            request.company_id,
            len(request.images),
        )

        self._runner.submit(analysis.id, lambda token: self._process(analysis.id, token))
        return analysis.id

    async def cancel(self, analysis_id: str, company_id: str | None = None) -> Analysis:
        """
        Cancel a pending or processing analysis.

        Raises:
            NotFoundError: Unknown analysis
            ConflictError: Analysis already finished
        """
        current = await self.get_analysis(analysis_id, company_id)
        if current.status not in ACTIVE_STATUSES:
            raise ConflictError(
                f"Cannot cancel analysis in status {current.status.value}",
                {"analysis_id": analysis_id, "status": current.status.value},
            )

        now = utcnow()
        cancelled = current.with_changes(status=AnalysisStatus.CANCELLED, updated_at=now, completed_at=now)
        if not await self._repo.transition(cancelled, ACTIVE_STATUSES):
            raise ConflictError(
                "Analysis finished before it could be cancelled",
                {"analysis_id": analysis_id},
            )

        self._runner.cancel(analysis_id)
        logger.info("Analysis %s: %s -> CANCELLED", analysis_id, current.status.value)
        return cancelled

    async def reanalyze(self, analysis_id: str, company_id: str | None = None) -> Analysis:
        """
        Reset a finished analysis to PENDING and process it again.

        Raises:
            NotFoundError: Unknown analysis
            ConflictError: Analysis still pending/processing, or its
                previous unit of work has not finished yet
        """
        current = await self.get_analysis(analysis_id, company_id)
        if current.status not in TERMINAL_STATUSES or self._runner.is_running(analysis_id):
            raise ConflictError(
                f"Analysis {analysis_id} is still in flight ({current.status.value})",
                {"analysis_id": analysis_id, "status": current.status.value},
            )

        reset = current.with_changes(
            status=AnalysisStatus.PENDING,
            extraction=None,
            non_conformities=[],
            verdict=None,
            score=None,
            confidence=None,
            tokens_consumed=0,
            cost=0.0,
            processing_ms=None,
            error_message=None,
            completed_at=None,
            updated_at=utcnow(),
        )
        if not await self._repo.transition(reset, TERMINAL_STATUSES):
            raise ConflictError("Analysis changed state concurrently", {"analysis_id": analysis_id})

        logger.info("Analysis %s: %s -> PENDING (reanalyze)", analysis_id, current.status.value)
        self._runner.submit(analysis_id, lambda token: self._process(analysis_id, token))
        return reset

    async def submit_feedback(
        self,
        analysis_id: str,
        feedback: FeedbackRequest,
        company_id: str | None = None,
    ) -> Feedback:
        """
        Record a user correction and feed it back into the knowledge index.

        Indexing runs in the background; its failures never affect the
        feedback record or the analysis.

        Raises:
            NotFoundError: Unknown analysis
            ConflictError: Analysis is not COMPLETED
        """
        analysis = await self.get_analysis(analysis_id, company_id)
        if analysis.status is not AnalysisStatus.COMPLETED:
            raise ConflictError(
                "Feedback requires a completed analysis",
                {"analysis_id": analysis_id, "status": analysis.status.value},
            )

        record = Feedback(
            id=uuid.uuid4().hex,
            analysis_id=analysis_id,
            company_id=analysis.company_id,
            user_id=feedback.user_id,
            feedback_type=feedback.feedback_type,
            original_value=feedback.original_value,
            corrected_value=feedback.corrected_value,
            explanation=feedback.explanation,
        )
        await self._repo.create_feedback(record)
        logger.info("Feedback %s (%s) recorded for analysis %s", record.id, record.feedback_type.value, analysis_id)

        if self._rag is not None:
            self._spawn(self._incorporate_feedback(analysis, record))
        return record

    async def get_analysis(self, analysis_id: str, company_id: str | None = None) -> Analysis:
        """
        Get an analysis visible to the tenant.

        Raises:
            NotFoundError: Unknown analysis or owned by another tenant
        """
        analysis = await self._repo.get_analysis(analysis_id, company_id)
        if analysis is None:
            raise NotFoundError(f"Analysis {analysis_id} not found", {"analysis_id": analysis_id})
        return analysis

    async def list_analyses(
        self,
        company_id: str,
        status: AnalysisStatus | None = None,
        test_type: TestType | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Analysis]:
        return await self._repo.list_analyses(company_id, status, test_type, limit, offset)

    async def wait(self, analysis_id: str) -> Analysis:
        """Wait for background processing of an analysis and return it."""
        await self._runner.wait(analysis_id)
        return await self.get_analysis(analysis_id)

    async def drain(self) -> None:
        """Wait for all processing and background indexing."""
        await self._runner.drain()
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if self._enhancer is not None:
            await self._enhancer.flush()

    # --- Background processing ---

    async def _process(self, analysis_id: str, token: CancellationToken) -> None:
        start = time.perf_counter()
        try:
            current = await self._repo.get_analysis(analysis_id)
            if current is None:
                logger.warning("Analysis %s vanished before processing", analysis_id)
                return
            if token.cancelled:
                return

            processing = current.with_changes(status=AnalysisStatus.PROCESSING, updated_at=utcnow())
            if not await self._repo.transition(processing, {AnalysisStatus.PENDING}):
                logger.info("Analysis %s is no longer pending; processing skipped", analysis_id)
                return
            logger.info("Analysis %s: PENDING -> PROCESSING", analysis_id)

            request = current.request
            context = await self._prompt_context(request)
            if token.cancelled:
                logger.info("Analysis %s cancelled before extraction", analysis_id)
                return

            hints = ExtractionHints(expected_tag=request.expected_tag, expected_serial=request.expected_serial)
            batch = await self._extractor.extract_batch(request.images, hints, context)
            if token.cancelled:
                logger.info("Analysis %s cancelled after extraction", analysis_id)
                return

            report = build_report_extraction(request.report_fields)
            merged = report.merge(batch.merged(), source="merged")
            date_format = request.date_format or self._date_format
            inconsistencies = validate(consolidate(request.test_type, report, batch, date_format))
            evaluation = evaluate(request.test_type, merged, inconsistencies, date_format)

            now = utcnow()
            completed = processing.with_changes(
                status=AnalysisStatus.COMPLETED,
                extraction=merged,
                non_conformities=evaluation.non_conformities,
                verdict=evaluation.verdict,
                score=evaluation.score,
                confidence=merged.mean_confidence,
                tokens_consumed=batch.total_tokens,
                cost=batch.total_cost,
                processing_ms=(time.perf_counter() - start) * 1000,
                updated_at=now,
                completed_at=now,
            )
            if not await self._repo.transition(completed, {AnalysisStatus.PROCESSING}):
                logger.info("Analysis %s was cancelled during processing; result discarded", analysis_id)
                return
        except Exception as e:
            logger.error("Analysis %s failed: %s", analysis_id, e)
            await self._mark_failed(analysis_id, str(e) or type(e).__name__)
            return

        logger.info(
            "Analysis %s: PROCESSING -> COMPLETED (%s, score %d, %d non-conformities)",
            analysis_id,
            evaluation.verdict.value,
            evaluation.score,
            len(evaluation.non_conformities),
        )
        await self._index(completed)

    async def _prompt_context(self, request: AnalysisRequest) -> PromptContext | None:
        if self._enhancer is None:
            return None
        try:
            context = await self._enhancer.enhance(
                request.test_type,
                report_query_text(request),
                request.company_id,
            )
        except Exception as e:
            logger.warning("Prompt context retrieval failed, continuing without it: %s", e)
            return None
        return None if context.is_empty else context

    async def _mark_failed(self, analysis_id: str, error: str) -> None:
        try:
            current = await self._repo.get_analysis(analysis_id)
            if current is None or current.status not in ACTIVE_STATUSES:
                return
            now = utcnow()
            failed = current.with_changes(
                status=AnalysisStatus.FAILED,
                error_message=error,
                updated_at=now,
                completed_at=now,
            )
            if await self._repo.transition(failed, ACTIVE_STATUSES):
                logger.info("Analysis %s: %s -> FAILED", analysis_id, current.status.value)
        except Exception as e:
            logger.error("Could not mark analysis %s as failed: %s", analysis_id, e)

    async def _index(self, analysis: Analysis) -> None:
        if self._rag is None or analysis.verdict is None:
            return
        try:
            result = await self._rag.index_analysis(
                analysis.id,
                analysis.company_id,
                analysis.test_type,
                analysis.verdict,
                analysis.extraction,
                analysis.non_conformities,
            )
        except Exception as e:
            logger.warning("Indexing analysis %s failed: %s", analysis.id, e)
            return
        if not result.success:
            logger.warning("Indexing analysis %s failed: %s", analysis.id, result.error)

    # --- Feedback ---

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _incorporate_feedback(self, analysis: Analysis, feedback: Feedback) -> None:
        assert self._rag is not None
        try:
            if feedback.feedback_type is FeedbackType.VERDICT_CORRECTION:
                await self._rag.mark_analysis_incorrect(analysis.id)

            result = await self._rag.index_correction(
                analysis.id,
                analysis.company_id,
                analysis.test_type,
                feedback.original_value,
                feedback.corrected_value,
                feedback.explanation,
            )
            if not result.success:
                logger.warning("Feedback %s was not indexed: %s", feedback.id, result.error)
                return
            await self._repo.mark_feedback_incorporated(feedback.id)
        except Exception as e:
            logger.warning("Incorporating feedback %s failed: %s", feedback.id, e)
