"""
RAG Service - Semantic search and context building for loop learning.

Completed analyses and user corrections are embedded and indexed so
that later analyses of similar reports can be prompted with them,
together with the technical standards corpus.

Features:
- Cosine similarity search with tenant visibility
- Token-budgeted context assembly (analyses, corrections, standards)
- Analysis, correction and standard indexing
- Usage tracking and correctness feedback
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any

from auditeng.config.errors import KnowledgeError
from auditeng.domains.extraction.models import FieldName, NormalizedExtraction
from auditeng.domains.rules.engine import PHASE_COMBINATIONS
from auditeng.domains.rules.models import NonConformity, Verdict
from auditeng.domains.validation.models import TestType

from .contracts import Embedder, VectorStore
from .models import (
    ContentType,
    IndexResult,
    KnowledgeEmbedding,
    RAGConfig,
    RAGContext,
    SearchFilters,
    SearchResult,
)

logger = logging.getLogger(__name__)

__all__ = [
    "RAGService",
    "estimate_tokens",
    "build_analysis_content",
    "build_correction_content",
    "format_similar_analyses",
    "format_corrections",
    "format_standards",
]

# Budget fractions: analyses stop at 50%, corrections at 75%, standards at 100%
ANALYSIS_BUDGET = 0.5
CORRECTION_BUDGET = 0.75
STANDARD_BUDGET = 1.0


def estimate_tokens(text: str) -> int:
    """
    Rough token count (~4 characters per token).

    Example:
        >>> estimate_tokens("abcde")
        2
    """
    return math.ceil(len(text) / 4)


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def build_analysis_content(
    test_type: TestType,
    verdict: Verdict,
    extraction: NormalizedExtraction | None,
    non_conformities: list[NonConformity],
) -> str:
    """
    Summarize a completed analysis for embedding.

    Args:
        test_type: Test documented by the report
        verdict: Final verdict
        extraction: Merged report and image fields
        non_conformities: Findings behind the verdict

    Returns:
        Plain-text summary
    """
    parts = [f"{test_type.value} Analysis - {verdict.value}"]

    if extraction is not None:
        parts.append("\nExtracted Data:")

        tag = extraction.value(FieldName.EQUIPMENT_TAG)
        if tag is not None:
            parts.append(f"- Equipment TAG: {tag}")

        if test_type is TestType.GROUNDING:
            resistance = extraction.value(FieldName.GROUND_RESISTANCE)
            if resistance is not None:
                parts.append(f"- Ground Resistance: {_fmt(resistance)} ohm")
            watermark = extraction.value(FieldName.PHOTO_WATERMARK)
            if watermark is not None:
                parts.append(f"- Watermark Present: {'Yes' if watermark else 'No'}")

        elif test_type is TestType.MEGGER:
            readings = [
                (combination, extraction.value(name))
                for combination, name in PHASE_COMBINATIONS.items()
                if extraction.value(name) is not None
            ]
            if readings:
                parts.append("- Insulation Resistance Readings:")
                parts.extend(f"  - {combination}: {_fmt(value)} Mohm" for combination, value in readings)
            absorption = extraction.value(FieldName.ABSORPTION_INDEX)
            if absorption is not None:
                parts.append(f"- Absorption Index: {_fmt(absorption)}")

        elif test_type is TestType.THERMOGRAPHY:
            delta = extraction.value(FieldName.DELTA_T)
            if delta is not None:
                parts.append(f"- Phase-to-Phase Delta T: {_fmt(delta)}C")
            ambient = extraction.value(FieldName.AMBIENT_TEMPERATURE)
            if ambient is not None:
                parts.append(f"- Ambient Temperature: {_fmt(ambient)}C")
            reflected = extraction.value(FieldName.REFLECTED_TEMPERATURE)
            if reflected is not None:
                parts.append(f"- Reflected Temperature: {_fmt(reflected)}C")

        expiry = extraction.value(FieldName.CALIBRATION_EXPIRY_DATE)
        if expiry is not None:
            parts.append(f"- Calibration Expiry: {expiry}")

    if non_conformities:
        parts.append("\nNon-Conformities Found:")
        for nc in non_conformities:
            parts.append(f"- [{nc.severity.value}] {nc.code}: {nc.description}")
            parts.append(f"  Evidence: {nc.evidence}")
    else:
        parts.append("\nNo non-conformities found.")

    return "\n".join(parts)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, default=str)


def build_correction_content(
    test_type: TestType,
    original_value: Any,
    corrected_value: Any,
    explanation: str | None = None,
) -> str:
    """Before/after/explanation text for a user correction."""
    parts = [
        f"CORRECTION for {test_type.value} Analysis",
        "\nOriginal (INCORRECT):",
        _as_text(original_value),
        "\nCorrected (CORRECT):",
        _as_text(corrected_value),
    ]
    if explanation:
        parts.extend(["\nExplanation:", explanation])
    return "\n".join(parts)


# --- Prompt formatting ---


def format_similar_analyses(analyses: list[SearchResult]) -> str:
    parts = [
        "## Reference: Similar Past Analyses",
        "",
        "Use these examples from past analyses to guide your extraction and validation:",
        "",
    ]
    for i, analysis in enumerate(analyses, 1):
        verdict = analysis.verdict.value if analysis.verdict else "N/A"
        parts.append(f"### Example {i} ({verdict}, {analysis.similarity * 100:.0f}% similar)")
        parts.append("")
        parts.append(analysis.content)
        parts.append("")
    return "\n".join(parts)


def format_corrections(corrections: list[SearchResult]) -> str:
    parts = [
        "## IMPORTANT: Corrections from Past Analyses",
        "",
        "Pay close attention to these corrections to avoid repeating past mistakes:",
        "",
    ]
    for correction in corrections:
        parts.append("**Correction:**")
        parts.append(correction.content)
        parts.append("")
    return "\n".join(parts)


def format_standards(standards: list[SearchResult]) -> str:
    parts = ["## Relevant Technical Standards", ""]
    for standard in standards:
        parts.append(standard.content)
        parts.append("")
    return "\n".join(parts)


class RAGService:
    """
    Knowledge search, context building and indexing.

    Example:
        >>> rag = RAGService(embedder, FAISSVectorStore(dimension=384))
        >>> context = await rag.build_context("GROUNDING analysis: ...", TestType.GROUNDING, "acme")
        >>> prompt_addition = rag.format_context(context)
    """

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        config: RAGConfig | None = None,
    ) -> None:
        """
        Initialize RAG service.

        Args:
            embedder: Text embedding function
            store: Vector store holding KnowledgeEmbedding records as metadata
            config: Search and context limits
        """
        self._embedder = embedder
        self._store = store
        self.config = config or RAGConfig()

    # --- Search ---

    async def search(self, query: str, filters: SearchFilters | None = None) -> list[SearchResult]:
        """
        Rank knowledge entries by cosine similarity to the query.

        Entries owned by another tenant are never returned; global
        entries are visible to everyone. Without a company id only
        global entries are visible.

        Args:
            query: Free-text query
            filters: Content/test type, verdict and tenant filters

        Returns:
            Results at or above the minimum similarity, best first
        """
        filters = filters or SearchFilters()
        limit = filters.limit or self.config.default_limit
        min_similarity = (
            filters.min_similarity
            if filters.min_similarity is not None
            else self.config.default_min_similarity
        )

        query_embedding = await self._embedder.embed(query)
        rows = await self._store.nearest(query_embedding, k=limit, predicate=filters.matches)

        results: list[SearchResult] = []
        for row in rows:
            if row["score"] < min_similarity:
                continue
            entry = KnowledgeEmbedding.from_record(row["metadata"])
            if entry.id is None:
                raise KnowledgeError(
                    "Vector store returned an entry without an id",
                    {"index": row.get("index"), "content_type": entry.content_type.value},
                )
            results.append(
                SearchResult(
                    id=entry.id,
                    content=entry.content,
                    content_type=entry.content_type,
                    test_type=entry.test_type,
                    verdict=entry.verdict,
                    similarity=row["score"],
                    metadata=entry.metadata,
                    analysis_id=entry.analysis_id,
                    company_id=entry.company_id,
                )
            )

        logger.debug("Knowledge search: query='%s' -> %d results", query[:50], len(results))
        return results

    # --- Context building ---

    async def build_context(
        self,
        query: str,
        test_type: TestType,
        company_id: str | None = None,
        max_tokens: int | None = None,
    ) -> RAGContext:
        """
        Retrieve similar analyses, corrections and standards for a prompt.

        Each category has its own similarity floor and cap, then results
        are appended greedily while the running token estimate stays
        within the category's share of the budget.

        Args:
            query: Query text describing the current report
            test_type: Test type of the current report
            company_id: Tenant requesting the context
            max_tokens: Token budget (defaults to config)

        Returns:
            Trimmed context with total token estimate
        """
        budget = self.config.max_context_tokens if max_tokens is None else max_tokens

        analyses = await self.search(
            query,
            SearchFilters(
                content_types=[ContentType.ANALYSIS_RESULT],
                test_type=test_type,
                company_id=company_id,
                limit=max(self.config.max_similar_analyses, 1),
                min_similarity=self.config.analysis_min_similarity,
            ),
        )
        corrections = await self.search(
            query,
            SearchFilters(
                content_types=[ContentType.MANUAL_CORRECTION],
                test_type=test_type,
                company_id=company_id,
                limit=max(self.config.max_corrections, 1),
                min_similarity=self.config.correction_min_similarity,
            ),
        )
        standards = await self.search(
            query,
            SearchFilters(
                content_types=[ContentType.TECHNICAL_STANDARD, ContentType.BEST_PRACTICE],
                test_type=test_type,
                company_id=company_id,
                limit=max(self.config.max_standards, 1),
                min_similarity=self.config.standard_min_similarity,
            ),
        )

        total = 0
        trimmed: list[list[SearchResult]] = []
        for results, cap, fraction in (
            (analyses, self.config.max_similar_analyses, ANALYSIS_BUDGET),
            (corrections, self.config.max_corrections, CORRECTION_BUDGET),
            (standards, self.config.max_standards, STANDARD_BUDGET),
        ):
            kept: list[SearchResult] = []
            for result in results[:cap]:
                tokens = estimate_tokens(result.content)
                if total + tokens > budget * fraction:
                    break
                kept.append(result)
                total += tokens
            trimmed.append(kept)

        context = RAGContext(
            similar_analyses=trimmed[0],
            corrections=trimmed[1],
            standards=trimmed[2],
            total_tokens=total,
        )
        logger.info(
            "RAG context for %s: %d analyses, %d corrections, %d standards (%d tokens)",
            test_type.value,
            len(context.similar_analyses),
            len(context.corrections),
            len(context.standards),
            total,
        )
        return context

    @staticmethod
    def format_context(context: RAGContext) -> str:
        """Render context sections for prompt injection."""
        sections: list[str] = []
        if context.similar_analyses:
            sections.append(format_similar_analyses(context.similar_analyses))
        if context.corrections:
            sections.append(format_corrections(context.corrections))
        if context.standards:
            sections.append(format_standards(context.standards))
        return "\n\n".join(sections)

    # --- Indexing ---

    async def _insert(self, entry: KnowledgeEmbedding) -> str:
        embedding = await self._embedder.embed(entry.content)
        return await self._store.insert(embedding, entry.to_record())

    async def index_analysis(
        self,
        analysis_id: str,
        company_id: str | None,
        test_type: TestType,
        verdict: Verdict,
        extraction: NormalizedExtraction | None,
        non_conformities: list[NonConformity],
    ) -> IndexResult:
        """
        Index a completed analysis for future retrieval.

        Failures are logged and returned, never raised.
        """
        try:
            entry = KnowledgeEmbedding(
                company_id=company_id,
                analysis_id=analysis_id,
                content_type=ContentType.ANALYSIS_RESULT,
                test_type=test_type,
                verdict=verdict,
                content=build_analysis_content(test_type, verdict, extraction, non_conformities),
                metadata={
                    "non_conformity_codes": [nc.code for nc in non_conformities],
                    "severities": sorted({nc.severity.value for nc in non_conformities}),
                },
            )
            embedding_id = await self._insert(entry)
        except Exception as e:
            logger.error("Failed to index analysis %s: %s", analysis_id, e)
            return IndexResult(success=False, error=str(e))

        logger.info("Indexed analysis %s as %s", analysis_id, embedding_id)
        return IndexResult(success=True, embedding_id=embedding_id, embedding_ids=[embedding_id])

    async def index_correction(
        self,
        analysis_id: str,
        company_id: str | None,
        test_type: TestType,
        original_value: Any,
        corrected_value: Any,
        explanation: str | None = None,
    ) -> IndexResult:
        """
        Index a user correction for loop learning.

        Failures are logged and returned, never raised.
        """
        try:
            entry = KnowledgeEmbedding(
                company_id=company_id,
                analysis_id=analysis_id,
                content_type=ContentType.MANUAL_CORRECTION,
                test_type=test_type,
                content=build_correction_content(test_type, original_value, corrected_value, explanation),
                metadata={"correction_type": "user_feedback", "has_explanation": bool(explanation)},
            )
            embedding_id = await self._insert(entry)
        except Exception as e:
            logger.error("Failed to index correction for analysis %s: %s", analysis_id, e)
            return IndexResult(success=False, error=str(e))

        logger.info("Indexed correction for analysis %s as %s", analysis_id, embedding_id)
        return IndexResult(success=True, embedding_id=embedding_id, embedding_ids=[embedding_id])

    async def index_global(
        self,
        content: str,
        content_type: ContentType,
        test_types: list[TestType],
        metadata: dict[str, Any] | None = None,
    ) -> IndexResult:
        """
        Index global knowledge once per applicable test type.

        The text is embedded once and the vector reused for every entry.
        """
        try:
            embedding = await self._embedder.embed(content)
            ids: list[str] = []
            for test_type in test_types:
                entry = KnowledgeEmbedding(
                    content_type=content_type,
                    test_type=test_type,
                    content=content,
                    metadata=dict(metadata or {}),
                )
                ids.append(await self._store.insert(embedding, entry.to_record()))
        except Exception as e:
            logger.error("Failed to index %s entry: %s", content_type.value, e)
            return IndexResult(success=False, error=str(e))

        return IndexResult(success=True, embedding_id=ids[0] if ids else None, embedding_ids=ids)

    async def index_standard(
        self,
        standard_name: str,
        section: str,
        content: str,
        test_types: list[TestType],
    ) -> IndexResult:
        """
        Index a technical standard excerpt.

        Example:
            >>> await rag.index_standard("NBR 5419", "Grounding", "...", [TestType.GROUNDING])
        """
        return await self.index_global(
            f"[{standard_name}] {section}\n\n{content}",
            ContentType.TECHNICAL_STANDARD,
            test_types,
            {"standard_name": standard_name, "section": section},
        )

    # --- Feedback ---

    async def track_usage(self, embedding_ids: list[str]) -> None:
        """Increment use counts of entries used as context."""
        for embedding_id in embedding_ids:
            record = self._store.get(embedding_id)
            if record is None:
                continue
            await self._store.update(embedding_id, {"use_count": int(record.get("use_count", 0)) + 1})

    async def mark_incorrect(self, embedding_id: str) -> bool:
        """Flag an entry as incorrect; returns False when it does not exist."""
        return await self._store.update(embedding_id, {"was_correct": False})

    async def mark_analysis_incorrect(self, analysis_id: str) -> int:
        """Flag the indexed results of an analysis as incorrect."""
        marked = 0
        for record in self._store.entries():
            if (
                record.get("analysis_id") == analysis_id
                and record.get("content_type") == ContentType.ANALYSIS_RESULT.value
                and await self.mark_incorrect(record["id"])
            ):
                marked += 1
        if marked:
            logger.info("Marked %d knowledge entries of analysis %s as incorrect", marked, analysis_id)
        return marked

    def find_global(self, key: str, value: Any) -> list[dict[str, Any]]:
        """Global entries whose metadata[key] equals value."""
        return [
            record
            for record in self._store.entries()
            if record.get("company_id") is None and record.get("metadata", {}).get(key) == value
        ]
