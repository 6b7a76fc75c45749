"""
Tests for knowledge search, context building, indexing and prompt enhancement.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from auditeng.adapters.faiss import FAISSVectorStore
from auditeng.config.errors import KnowledgeError
from auditeng.domains.extraction.models import ExtractedField, NormalizedExtraction
from auditeng.domains.rules.models import NonConformity, Verdict
from auditeng.domains.validation.models import Severity, TestType

from .criteria import (
    ALL_CRITERIA,
    CriteriaCategory,
    CriteriaIndexer,
    build_criterion_content,
    criteria_by_category,
    criteria_by_test_type,
)
from .models import ContentType, KnowledgeEmbedding, RAGConfig, RAGContext, SearchFilters, SearchResult
from .prompt_enhancer import RAGPromptEnhancer, build_user_hints
from .rag import RAGService, build_analysis_content, build_correction_content, estimate_tokens

DIMENSION = 4
_AXES = ("grounding", "megger", "thermography")


class KeywordEmbedder:
    """Embeds text onto one axis per test type keyword (fallback axis otherwise)."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        lowered = text.lower()
        vector = np.zeros(DIMENSION, dtype="float32")
        for axis, keyword in enumerate(_AXES):
            if keyword in lowered:
                vector[axis] = 1.0
                return vector
        vector[-1] = 1.0
        return vector


class FailingEmbedder:
    async def embed(self, text: str) -> np.ndarray:
        raise RuntimeError("embedding service down")


def _vector(similarity: float) -> np.ndarray:
    """Vector with the given cosine similarity to the grounding axis."""
    return np.array([similarity, math.sqrt(1 - similarity**2), 0.0, 0.0], dtype="float32")


async def _insert(
    store: FAISSVectorStore,
    content: str,
    content_type: ContentType = ContentType.ANALYSIS_RESULT,
    similarity: float = 1.0,
    **fields: object,
) -> str:
    fields.setdefault("test_type", TestType.GROUNDING)
    entry = KnowledgeEmbedding(content=content, content_type=content_type, **fields)  # type: ignore[arg-type]
    return await store.insert(_vector(similarity), entry.to_record())


@pytest.fixture
def store() -> FAISSVectorStore:
    return FAISSVectorStore(dimension=DIMENSION)


@pytest.fixture
def rag(store: FAISSVectorStore) -> RAGService:
    return RAGService(KeywordEmbedder(), store)


QUERY = "GROUNDING analysis: TAG EQ-01"


# --- Search Tests ---


async def test_search_tenant_visibility(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test tenants see their own and global entries, never other tenants'."""
    acme = await _insert(store, "acme", company_id="acme")
    await _insert(store, "globex", company_id="globex")
    shared = await _insert(store, "global")

    acme_view = await rag.search(QUERY, SearchFilters(company_id="acme", limit=10))
    anonymous_view = await rag.search(QUERY, SearchFilters(limit=10))

    assert {r.id for r in acme_view} == {acme, shared}
    assert [r.id for r in anonymous_view] == [shared]


async def test_search_drops_results_below_default_threshold(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test the default minimum similarity of 0.70."""
    await _insert(store, "close", similarity=0.9)
    await _insert(store, "far", similarity=0.62)

    results = await rag.search(QUERY)

    assert [r.content for r in results] == ["close"]
    assert results[0].similarity == pytest.approx(0.9, abs=1e-5)


async def test_search_filters(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test content type, test type and verdict filters."""
    await _insert(store, "rejected", verdict=Verdict.REJECTED)
    await _insert(store, "approved", verdict=Verdict.APPROVED)
    await _insert(store, "megger", test_type=TestType.MEGGER)
    await _insert(store, "standard", content_type=ContentType.TECHNICAL_STANDARD)

    results = await rag.search(
        QUERY,
        SearchFilters(
            content_types=[ContentType.ANALYSIS_RESULT],
            test_type=TestType.GROUNDING,
            verdict=Verdict.REJECTED,
            limit=10,
        ),
    )

    assert [r.content for r in results] == ["rejected"]
    assert results[0].verdict is Verdict.REJECTED
    assert results[0].content_type is ContentType.ANALYSIS_RESULT


async def test_search_excludes_incorrect_entries(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test entries flagged incorrect are not retrieved unless asked for."""
    entry_id = await _insert(store, "wrong")
    assert await rag.mark_incorrect(entry_id)

    assert await rag.search(QUERY) == []
    assert len(await rag.search(QUERY, SearchFilters(include_incorrect=True))) == 1


async def test_search_rejects_entry_without_id() -> None:
    """Test a stored record missing its id raises KnowledgeError."""

    class IdlessStore:
        async def nearest(self, query_embedding, k=10, predicate=None):
            record = KnowledgeEmbedding(
                content="Grounding 3.1 ohm", content_type=ContentType.ANALYSIS_RESULT, test_type=TestType.GROUNDING
            ).to_record()
            return [{"score": 1.0, "index": 0, "metadata": record}]

    service = RAGService(KeywordEmbedder(), IdlessStore())  # type: ignore[arg-type]

    with pytest.raises(KnowledgeError) as exc_info:
        await service.search("grounding")
    assert exc_info.value.details["index"] == 0


# --- Context Tests ---


async def test_build_context_budget_caps_analyses(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test ten 2000-token analyses under a 4000 budget yield one analysis."""
    header = "GROUNDING Analysis - REJECTED\n"
    for i in range(10):
        body = f"{i}".ljust(8000 - len(header), "x")
        await _insert(store, header + body, verdict=Verdict.REJECTED)
    correction = "c" * 400  # 100 tokens
    await _insert(store, correction, content_type=ContentType.MANUAL_CORRECTION)

    context = await rag.build_context(QUERY, TestType.GROUNDING, max_tokens=4000)

    assert len(context.similar_analyses) == 1
    assert estimate_tokens(context.similar_analyses[0].content) == 2000
    assert len(context.corrections) == 1
    assert context.total_tokens == 2100


async def test_build_context_category_floors(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test corrections and standards are accepted at lower similarity than analyses."""
    await _insert(store, "analysis", similarity=0.62)
    await _insert(store, "correction", content_type=ContentType.MANUAL_CORRECTION, similarity=0.62)
    await _insert(store, "standard", content_type=ContentType.TECHNICAL_STANDARD, similarity=0.57)
    await _insert(store, "practice", content_type=ContentType.BEST_PRACTICE, similarity=0.50)

    context = await rag.build_context(QUERY, TestType.GROUNDING)

    assert context.similar_analyses == []
    assert [r.content for r in context.corrections] == ["correction"]
    assert [r.content for r in context.standards] == ["standard"]


async def test_build_context_respects_caps(store: FAISSVectorStore) -> None:
    """Test per-category result caps."""
    rag = RAGService(KeywordEmbedder(), store, RAGConfig(max_similar_analyses=2, max_corrections=1))
    for i in range(4):
        await _insert(store, f"analysis {i}")
        await _insert(store, f"correction {i}", content_type=ContentType.MANUAL_CORRECTION)

    context = await rag.build_context(QUERY, TestType.GROUNDING)

    assert len(context.similar_analyses) == 2
    assert len(context.corrections) == 1
    assert len(context.embedding_ids) == 3


async def test_build_context_empty_index(rag: RAGService) -> None:
    """Test context on an empty index."""
    context = await rag.build_context(QUERY, TestType.GROUNDING, "acme")
    assert context.is_empty
    assert context.total_tokens == 0
    assert RAGService.format_context(context) == ""


def test_format_context_sections() -> None:
    """Test prompt sections and similarity rendering."""
    context = RAGContext(
        similar_analyses=[
            SearchResult(
                id="a",
                content="GROUNDING Analysis - REJECTED",
                content_type=ContentType.ANALYSIS_RESULT,
                verdict=Verdict.REJECTED,
                similarity=0.874,
            )
        ],
        corrections=[
            SearchResult(id="c", content="CORRECTION", content_type=ContentType.MANUAL_CORRECTION, similarity=0.7)
        ],
        standards=[
            SearchResult(id="s", content="[NBR 5419] Limits", content_type=ContentType.TECHNICAL_STANDARD, similarity=0.6)
        ],
    )

    text = RAGService.format_context(context)

    assert "## Reference: Similar Past Analyses" in text
    assert "### Example 1 (REJECTED, 87% similar)" in text
    assert "## IMPORTANT: Corrections from Past Analyses" in text
    assert "## Relevant Technical Standards" in text
    assert text.index("Similar Past") < text.index("Corrections") < text.index("Technical Standards")


# --- Content Builder Tests ---


def test_build_analysis_content() -> None:
    """Test the analysis summary layout."""
    extraction = NormalizedExtraction(
        source="merged",
        fields={
            "equipment_tag": ExtractedField(value="EQ-01", confidence=0.9, source="report"),
            "ground_resistance": ExtractedField(value=6.2, confidence=0.9, source="report"),
            "photo_watermark": ExtractedField(value=False, confidence=0.9, source="visible_photo_1"),
            "calibration_expiry_date": ExtractedField(value="2025-01-01", confidence=0.9, source="certificate_1"),
        },
    )
    nc = NonConformity(
        code="GND-001",
        severity=Severity.CRITICAL,
        description="Ground resistance 6.2 ohm exceeds the 5 ohm limit",
        evidence="ground_resistance = 6.2",
    )

    content = build_analysis_content(TestType.GROUNDING, Verdict.REJECTED, extraction, [nc])

    assert content.splitlines() == [
        "GROUNDING Analysis - REJECTED",
        "",
        "Extracted Data:",
        "- Equipment TAG: EQ-01",
        "- Ground Resistance: 6.2 ohm",
        "- Watermark Present: No",
        "- Calibration Expiry: 2025-01-01",
        "",
        "Non-Conformities Found:",
        "- [CRITICAL] GND-001: Ground resistance 6.2 ohm exceeds the 5 ohm limit",
        "  Evidence: ground_resistance = 6.2",
    ]


def test_build_analysis_content_megger_without_findings() -> None:
    """Test megger readings listing and the clean footer."""
    extraction = NormalizedExtraction(
        fields={"insulation_resistance_a_b": ExtractedField(value=2500.0, confidence=0.9, source="report")}
    )

    content = build_analysis_content(TestType.MEGGER, Verdict.APPROVED, extraction, [])

    assert "- Insulation Resistance Readings:\n  - A-B: 2500 Mohm" in content
    assert content.endswith("\nNo non-conformities found.")


def test_build_correction_content() -> None:
    """Test correction text with structured values."""
    content = build_correction_content(
        TestType.THERMOGRAPHY,
        {"verdict": "APPROVED"},
        "REJECTED",
        "Delta T of 18C was missed",
    )

    assert content.startswith("CORRECTION for THERMOGRAPHY Analysis\n\nOriginal (INCORRECT):")
    assert '"verdict": "APPROVED"' in content
    assert "\nCorrected (CORRECT):\nREJECTED" in content
    assert content.endswith("\nExplanation:\nDelta T of 18C was missed")


# --- Indexing Tests ---


async def test_index_analysis_then_retrieve(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test an indexed analysis is found by a similar query for its tenant only."""
    nc = NonConformity(code="GND-001", severity=Severity.CRITICAL, description="d", evidence="e")
    result = await rag.index_analysis("an-1", "acme", TestType.GROUNDING, Verdict.REJECTED, None, [nc])

    assert result.success
    record = store.get(result.embedding_id or "")
    assert record is not None
    assert record["metadata"] == {"non_conformity_codes": ["GND-001"], "severities": ["CRITICAL"]}
    assert record["was_correct"] is True
    assert record["use_count"] == 0

    found = await rag.search(QUERY, SearchFilters(company_id="acme"))
    assert [r.analysis_id for r in found] == ["an-1"]
    assert await rag.search(QUERY, SearchFilters(company_id="globex")) == []


async def test_index_failures_are_returned_not_raised(store: FAISSVectorStore) -> None:
    """Test indexing errors are reported in the result."""
    rag = RAGService(FailingEmbedder(), store)

    analysis = await rag.index_analysis("an-1", "acme", TestType.GROUNDING, Verdict.APPROVED, None, [])
    correction = await rag.index_correction("an-1", "acme", TestType.GROUNDING, "a", "b")

    assert not analysis.success
    assert "embedding service down" in (analysis.error or "")
    assert not correction.success
    assert store.size == 0


async def test_index_standard_per_test_type(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test one global entry per applicable test type."""
    result = await rag.index_standard(
        "NBR 5419", "Grounding limits", "Maximum 5 ohms", [TestType.GROUNDING, TestType.MEGGER]
    )

    assert result.success
    assert len(result.embedding_ids) == 2
    records = store.entries()
    assert {r["test_type"] for r in records} == {"GROUNDING", "MEGGER"}
    assert all(r["company_id"] is None for r in records)
    assert records[0]["content"].startswith("[NBR 5419] Grounding limits\n\n")


async def test_track_usage_and_mark_analysis_incorrect(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test use counts increment and analysis entries can be flagged."""
    result = await rag.index_analysis("an-1", "acme", TestType.GROUNDING, Verdict.APPROVED, None, [])
    entry_id = result.embedding_id or ""

    await rag.track_usage([entry_id, entry_id, "missing"])
    marked = await rag.mark_analysis_incorrect("an-1")

    record = store.get(entry_id)
    assert record is not None
    assert record["use_count"] == 2
    assert record["was_correct"] is False
    assert marked == 1
    assert await rag.mark_analysis_incorrect("unknown") == 0


# --- Prompt Enhancer Tests ---


async def test_enhance_builds_prompt_context(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test system addition, hints and background usage tracking."""
    gnd = NonConformity(code="GND-001", severity=Severity.CRITICAL, description="d", evidence="e")
    sig = NonConformity(code="GND-003", severity=Severity.MAJOR, description="d", evidence="e")
    first = await rag.index_analysis("an-1", "acme", TestType.GROUNDING, Verdict.REJECTED, None, [gnd, sig])
    await rag.index_analysis("an-2", "acme", TestType.GROUNDING, Verdict.REJECTED, None, [gnd])
    embedder = KeywordEmbedder()
    enhancer = RAGPromptEnhancer(RAGService(embedder, store))

    context = await enhancer.enhance(TestType.GROUNDING, "TAG EQ-01 " + "z" * 1000, "acme")
    await enhancer.flush()

    assert embedder.calls[0].startswith("GROUNDING analysis: TAG EQ-01")
    assert len(embedder.calls[0]) == len("GROUNDING analysis: ") + 500
    assert context.system_addition.startswith("## Reference: Similar Past Analyses")
    assert "Similar reports in the past have been REJECTED" in context.user_hints
    assert "Common issues found in similar analyses: GND-001, GND-003" in context.user_hints
    assert len(context.embedding_ids) == 2
    record = store.get(first.embedding_id or "")
    assert record is not None
    assert record["use_count"] == 1


async def test_enhance_with_nothing_indexed(rag: RAGService) -> None:
    """Test an empty index gives an empty prompt context."""
    enhancer = RAGPromptEnhancer(rag)
    context = await enhancer.enhance(TestType.MEGGER, "text")
    assert context.is_empty
    assert context.embedding_ids == []


def test_user_hints_mention_corrections() -> None:
    """Test the corrections hint."""
    context = RAGContext(
        corrections=[SearchResult(id="c", content="x", content_type=ContentType.MANUAL_CORRECTION, similarity=0.8)]
    )
    hints = build_user_hints(context)
    assert hints.startswith("\n\n**Analysis Hints (from past experience):**\n- Important:")
    assert build_user_hints(RAGContext()) == ""


# --- Criteria Tests ---


def test_criteria_selection() -> None:
    """Test category and test type selection (universal criteria always apply)."""
    universal = criteria_by_category(CriteriaCategory.UNIVERSAL)
    megger = criteria_by_test_type(TestType.MEGGER)

    assert universal
    assert all(doc in megger for doc in universal)
    assert not any(doc.category is CriteriaCategory.GROUNDING for doc in megger)
    assert len({doc.id for doc in ALL_CRITERIA}) == len(ALL_CRITERIA)


def test_criterion_content_layout() -> None:
    """Test the embedded criterion text."""
    doc = next(d for d in ALL_CRITERIA if d.limit)
    content = build_criterion_content(doc)
    assert content.startswith(f"[{doc.type.value}] {doc.title}\n\nCategory: ")
    assert f"Limit: {doc.limit}" in content


async def test_criteria_indexer_is_idempotent(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test seeding twice indexes nothing new."""
    indexer = CriteriaIndexer(rag)
    seen: list[str] = []

    first = await indexer.index_all(progress=lambda p: seen.append(p.criterion_id))
    size = store.size
    second = await indexer.index_all()

    expected_entries = sum(len(doc.applicable_test_types) for doc in ALL_CRITERIA)
    assert first.indexed == len(ALL_CRITERIA)
    assert first.success
    assert seen == [doc.id for doc in ALL_CRITERIA]
    assert size == expected_entries
    assert second.indexed == 0
    assert second.skipped == len(ALL_CRITERIA)
    assert store.size == size


async def test_criteria_indexer_by_test_type(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test partial seeding and global visibility of seeded criteria."""
    summary = await CriteriaIndexer(rag).index_by_test_type(TestType.THERMOGRAPHY)

    assert summary.indexed == len(criteria_by_test_type(TestType.THERMOGRAPHY))
    types = {r["content_type"] for r in store.entries()}
    assert types <= {ContentType.TECHNICAL_STANDARD.value, ContentType.BEST_PRACTICE.value}
    assert all(r["company_id"] is None for r in store.entries())


async def test_criteria_indexer_by_category(rag: RAGService, store: FAISSVectorStore) -> None:
    """Test seeding one category indexes only its criteria."""
    summary = await CriteriaIndexer(rag).index_by_category(CriteriaCategory.MEGGER)

    expected = criteria_by_category(CriteriaCategory.MEGGER)
    assert summary.indexed == len(expected)
    assert {r["criterion_id"] for r in (e["metadata"] for e in store.entries())} == {doc.id for doc in expected}
