"""
Tests for batch extraction and equipment identification merge.
"""

from __future__ import annotations

import asyncio

import pytest

from .batch import BatchExtractor, pick_best_field
from .contracts import ExtractorSpec
from .models import (
    DocumentImage,
    ExtractedField,
    ExtractionHints,
    ExtractionKind,
    ExtractionMetrics,
    ExtractionResult,
    FieldName,
    NormalizedExtraction,
)

IMAGE = "https://storage.example.com/report-42/page.jpg"


def _result(source: str, tag: tuple[str, float] | None = None, serial: tuple[str, float] | None = None) -> ExtractionResult:
    fields = {}
    if tag:
        fields[FieldName.EQUIPMENT_TAG.value] = ExtractedField(value=tag[0], confidence=tag[1], source=source)
    if serial:
        fields[FieldName.EQUIPMENT_SERIAL.value] = ExtractedField(
            value=serial[0], confidence=serial[1], source=source
        )
    return ExtractionResult(
        success=True,
        data=NormalizedExtraction(source=source, fields=fields),
        metrics=ExtractionMetrics(total_tokens=1000, estimated_cost=0.01),
    )


class FakeClient:
    """Extractor returning per-source results, optionally after a delay."""

    def __init__(self, results: dict[str, object], delays: dict[str, float] | None = None) -> None:
        self.results = results
        self.delays = delays or {}
        self.seen: list[str] = []
        self.hints: list[ExtractionHints] = []

    async def extract(self, spec: ExtractorSpec) -> ExtractionResult:
        self.seen.append(spec.source)
        self.hints.append(spec.hints)  # type: ignore[attr-defined]
        await asyncio.sleep(self.delays.get(spec.source, 0))
        outcome = self.results[spec.source]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome  # type: ignore[return-value]


def _images(*kinds: ExtractionKind) -> list[DocumentImage]:
    return [DocumentImage(image=IMAGE, kind=kind, page_number=i + 1) for i, kind in enumerate(kinds)]


# --- pick_best_field Tests ---


def test_pick_best_field_highest_confidence() -> None:
    """Test the most confident present candidate wins."""
    fields = [
        ExtractedField(value="EQ-01", confidence=0.7, source="a"),
        ExtractedField(value="EQ-1", confidence=0.9, source="b"),
    ]
    assert pick_best_field(fields).source == "b"


def test_pick_best_field_ignores_missing() -> None:
    """Test not-found candidates never win."""
    fields = [ExtractedField.not_found(), ExtractedField(value="EQ-01", confidence=0.1, source="b")]
    assert pick_best_field(fields).value == "EQ-01"


def test_pick_best_field_empty() -> None:
    """Test no candidates yields a not-found field."""
    assert pick_best_field([]).is_present is False


# --- BatchExtractor Tests ---


async def test_batch_names_sources_per_kind() -> None:
    """Test sources are numbered per document kind."""
    client = FakeClient(
        {
            "thermal_image_1": _result("thermal_image_1"),
            "visible_photo_1": _result("visible_photo_1"),
            "thermal_image_2": _result("thermal_image_2"),
            "certificate_1": _result("certificate_1"),
        }
    )
    batch = BatchExtractor(client)

    result = await batch.extract_batch(
        _images(
            ExtractionKind.THERMAL,
            ExtractionKind.VISIBLE,
            ExtractionKind.THERMAL,
            ExtractionKind.CERTIFICATE,
        )
    )

    assert [e.source for e in result.extractions] == [
        "thermal_image_1",
        "visible_photo_1",
        "thermal_image_2",
        "certificate_1",
    ]
    assert [e.source for e in result.by_kind(ExtractionKind.THERMAL)] == ["thermal_image_1", "thermal_image_2"]
    assert result.processed_count == 4


async def test_batch_accumulates_totals() -> None:
    """Test tokens and cost are summed across images."""
    client = FakeClient({"thermal_image_1": _result("thermal_image_1"), "thermal_image_2": _result("thermal_image_2")})

    result = await BatchExtractor(client).extract_batch(_images(ExtractionKind.THERMAL, ExtractionKind.THERMAL))

    assert result.total_tokens == 2000
    assert result.total_cost == pytest.approx(0.02)


async def test_batch_skips_failed_images() -> None:
    """Test failed and raising extractions are skipped, not fatal."""
    client = FakeClient(
        {
            "thermal_image_1": ExtractionResult(success=False, error="circuit open"),
            "visible_photo_1": RuntimeError("boom"),
            "certificate_1": _result("certificate_1", serial=("49001234", 0.9)),
        }
    )

    result = await BatchExtractor(client).extract_batch(
        _images(ExtractionKind.THERMAL, ExtractionKind.VISIBLE, ExtractionKind.CERTIFICATE)
    )

    assert [e.source for e in result.extractions] == ["certificate_1"]
    assert [(f.source, f.error) for f in result.failures] == [
        ("thermal_image_1", "circuit open"),
        ("visible_photo_1", "boom"),
    ]
    assert result.equipment.serial.value == "49001234"


async def test_batch_merges_equipment_by_confidence() -> None:
    """Test tag and serial are picked independently by confidence."""
    client = FakeClient(
        {
            "thermal_image_1": _result("thermal_image_1", tag=("PDU-A-01", 0.6), serial=("SN-9", 0.95)),
            "visible_photo_1": _result("visible_photo_1", tag=("PDU A 01", 0.9), serial=("SN9", 0.5)),
        }
    )

    result = await BatchExtractor(client).extract_batch(_images(ExtractionKind.THERMAL, ExtractionKind.VISIBLE))

    assert result.equipment.tag.value == "PDU A 01"
    assert result.equipment.tag.source == "visible_photo_1"
    assert result.equipment.serial.value == "SN-9"
    assert result.equipment.serial.source == "thermal_image_1"


async def test_batch_merge_independent_of_completion_order() -> None:
    """Test ties go to the earlier input even when it finishes last."""
    client = FakeClient(
        {
            "thermal_image_1": _result("thermal_image_1", tag=("EQ-01", 0.8)),
            "thermal_image_2": _result("thermal_image_2", tag=("EQ-02", 0.8)),
        },
        delays={"thermal_image_1": 0.05},
    )

    result = await BatchExtractor(client, max_concurrent=2).extract_batch(
        _images(ExtractionKind.THERMAL, ExtractionKind.THERMAL)
    )

    assert client.seen == ["thermal_image_1", "thermal_image_2"]
    assert result.equipment.tag.value == "EQ-01"
    assert [e.source for e in result.extractions] == ["thermal_image_1", "thermal_image_2"]


async def test_batch_passes_hints_to_every_spec() -> None:
    """Test expected tag hints reach each extractor."""
    hints = ExtractionHints(expected_tag="PDU-A-01")
    client = FakeClient({"thermal_image_1": _result("thermal_image_1"), "visible_photo_1": _result("visible_photo_1")})

    await BatchExtractor(client).extract_batch(_images(ExtractionKind.THERMAL, ExtractionKind.VISIBLE), hints=hints)

    assert client.hints == [hints, hints]


async def test_batch_empty() -> None:
    """Test an empty batch returns empty totals."""
    result = await BatchExtractor(FakeClient({})).extract_batch([])
    assert result.extractions == []
    assert result.equipment.tag.is_present is False
    assert result.merged().fields == {}
