"""
Cross-Source Consistency Validator - Fraud and error detection.

Compares the same fact across independent evidence sources (report body,
photos, thermal overlay, calibration certificate). Every check:
- returns at most one Inconsistency (the first disagreement)
- is skipped when fewer than two comparable sources exist

Checks run most-critical first so severity-sorted output is stable.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

from auditeng.domains.extraction.models import (
    BatchExtractionResult,
    ExtractionKind,
    FieldName,
    NormalizedExtraction,
)

from .dates import DateFormat, is_expired, parse_date
from .models import ConsolidatedEvidence, Inconsistency, Severity, TestType

logger = logging.getLogger(__name__)

__all__ = [
    "TEMPERATURE_TOLERANCE",
    "DISPLAY_TOLERANCE",
    "normalize_tag",
    "normalize_serial",
    "check_certificate_expiry",
    "check_tag_consistency",
    "check_temperature_consistency",
    "check_serial_consistency",
    "check_display_value",
    "validate",
    "consolidate",
]

TEMPERATURE_TOLERANCE = 1.0  # ambient vs reflected, same scale as extracted
DISPLAY_TOLERANCE = 0.05  # relative, photo display vs report table

_TAG_SEPARATORS = re.compile(r"[\s\-_]+")
_SERIAL_NOISE = re.compile(r"[\s\-_.]+")


def normalize_tag(tag: str) -> str:
    """
    Uppercase and collapse whitespace/hyphen/underscore runs to one hyphen.

    Example:
        >>> normalize_tag("eq 01") == normalize_tag("EQ-01")
        True
    """
    return _TAG_SEPARATORS.sub("-", tag.strip().upper())


def normalize_serial(serial: str) -> str:
    """
    Uppercase and strip whitespace, hyphens, underscores and periods.

    Example:
        >>> normalize_serial("ab-12.34_5")
        'AB12345'
    """
    return _SERIAL_NOISE.sub("", serial.upper())


def _listing(candidates: list[tuple[str, str]]) -> str:
    return " | ".join(f"{source}: {raw}" for source, raw in candidates)


def _first_mismatch(
    candidates: list[tuple[str, str]],
    normalize: Callable[[str], str],
) -> tuple[str, str] | None:
    """(expected raw, found raw) for the first value disagreeing with the first source."""
    if len(candidates) < 2:
        return None
    reference = normalize(candidates[0][1])
    for _, raw in candidates[1:]:
        if normalize(raw) != reference:
            return candidates[0][1], raw
    return None


def check_certificate_expiry(evidence: ConsolidatedEvidence) -> Inconsistency | None:
    """Certificate expired before the measurement (same day is not flagged here)."""
    expiry = parse_date(evidence.certificate_expiry, evidence.date_format)
    measured = parse_date(evidence.measurement_date, evidence.date_format)
    if expiry is None or measured is None:
        return None
    if not is_expired(expiry, measured):
        return None

    return Inconsistency(
        severity=Severity.CRITICAL,
        code="CERT-001",
        field=FieldName.CALIBRATION_EXPIRY_DATE.value,
        expected=f"on or after {measured.isoformat()}",
        found=expiry.isoformat(),
        message=(
            f"Calibration certificate expired on {expiry.isoformat()}, "
            f"before the measurement date {measured.isoformat()}"
        ),
    )


def check_tag_consistency(evidence: ConsolidatedEvidence) -> Inconsistency | None:
    """Equipment TAG must match across report header, photo and data table."""
    candidates = evidence.tag_candidates()
    mismatch = _first_mismatch(candidates, normalize_tag)
    if mismatch is None:
        return None

    expected, found = mismatch
    return Inconsistency(
        severity=Severity.CRITICAL,
        code="TAG-001",
        field=FieldName.EQUIPMENT_TAG.value,
        expected=expected,
        found=found,
        message=f"Equipment TAG differs across sources: {_listing(candidates)}",
    )


def check_temperature_consistency(evidence: ConsolidatedEvidence) -> Inconsistency | None:
    """Ambient and reflected temperature must agree within tolerance (thermography only)."""
    if evidence.test_type != TestType.THERMOGRAPHY:
        return None
    ambient = evidence.ambient_temperature
    reflected = evidence.reflected_temperature
    if ambient is None or reflected is None:
        return None

    difference = abs(ambient - reflected)
    if difference <= TEMPERATURE_TOLERANCE:
        return None

    return Inconsistency(
        severity=Severity.CRITICAL,
        code="TEMP-001",
        field=FieldName.REFLECTED_TEMPERATURE.value,
        expected=f"within {TEMPERATURE_TOLERANCE:g} of ambient {ambient:g}",
        found=f"{reflected:g}",
        message=(
            f"Reflected temperature {reflected:g} differs from ambient {ambient:g} "
            f"by {difference:.1f} (tolerance {TEMPERATURE_TOLERANCE:g})"
        ),
    )


def check_serial_consistency(evidence: ConsolidatedEvidence) -> Inconsistency | None:
    """Instrument serial must match across certificate, report, photo and instrument."""
    candidates = evidence.serial_candidates()
    mismatch = _first_mismatch(candidates, normalize_serial)
    if mismatch is None:
        return None

    expected, found = mismatch
    return Inconsistency(
        severity=Severity.CRITICAL,
        code="SERIAL-001",
        field=FieldName.INSTRUMENT_SERIAL.value,
        expected=expected,
        found=found,
        message=f"Instrument serial differs across sources: {_listing(candidates)}",
    )


def check_display_value(evidence: ConsolidatedEvidence) -> Inconsistency | None:
    """Photographed display value must match the tabulated value within 5%."""
    photo = evidence.display_value
    table = evidence.table_value
    if photo is None or table is None or table == 0:
        return None

    deviation = abs(photo - table) / abs(table)
    if deviation <= DISPLAY_TOLERANCE:
        return None

    return Inconsistency(
        severity=Severity.MINOR,
        code="VALOR-001",
        field=FieldName.TABLE_VALUE.value,
        expected=f"{table:g}",
        found=f"{photo:g}",
        message=(
            f"Display value {photo:g} in photo differs from table value {table:g} "
            f"by {deviation:.1%} (tolerance {DISPLAY_TOLERANCE:.0%})"
        ),
    )


_CHECKS = (
    check_certificate_expiry,
    check_tag_consistency,
    check_temperature_consistency,
    check_serial_consistency,
    check_display_value,
)


def validate(evidence: ConsolidatedEvidence) -> list[Inconsistency]:
    """
    Run every consistency check in priority order.

    Args:
        evidence: Consolidated per-source values

    Returns:
        Inconsistencies, at most one per check, most critical check first

    Example:
        >>> evidence = ConsolidatedEvidence(test_type=TestType.GROUNDING, report_tag="EQ-01", photo_tag="EQ-02")
        >>> [i.code for i in validate(evidence)]
        ['TAG-001']
    """
    inconsistencies: list[Inconsistency] = []
    for check in _CHECKS:
        finding = check(evidence)
        if finding is not None:
            inconsistencies.append(finding)

    if inconsistencies:
        logger.info(
            "Consistency validation found %d issue(s): %s",
            len(inconsistencies),
            ", ".join(i.code for i in inconsistencies),
        )
    return inconsistencies


def _best_value(extractions: list[NormalizedExtraction], name: FieldName) -> Any:
    if not extractions:
        return None
    return NormalizedExtraction.merge_all(extractions).value(name)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str | None:
    return None if value is None else str(value)


def consolidate(
    test_type: TestType,
    report: NormalizedExtraction,
    batch: BatchExtractionResult | None = None,
    date_format: DateFormat = DateFormat.DMY,
) -> ConsolidatedEvidence:
    """
    Collect one value per evidence source from the report body and images.

    Image sources are merged per kind (highest confidence wins). Camera
    parameters and the expiry date fall back to the report body when no
    image reported them.

    Args:
        test_type: Test documented by the report
        report: Fields read from the report body (source "report")
        batch: Batch extraction over the report images
        date_format: Day/month order of slashed dates

    Returns:
        ConsolidatedEvidence snapshot for validate()
    """
    thermal: list[NormalizedExtraction] = []
    visible: list[NormalizedExtraction] = []
    certificates: list[NormalizedExtraction] = []
    if batch is not None:
        thermal = [e.extraction for e in batch.by_kind(ExtractionKind.THERMAL)]
        visible = [e.extraction for e in batch.by_kind(ExtractionKind.VISIBLE)]
        certificates = [e.extraction for e in batch.by_kind(ExtractionKind.CERTIFICATE)]

    photo_tag = batch.equipment.tag.value if batch is not None else None

    expiry = _best_value(certificates, FieldName.CALIBRATION_EXPIRY_DATE)
    if expiry is None:
        expiry = report.value(FieldName.CALIBRATION_EXPIRY_DATE)

    ambient = _best_value(thermal, FieldName.AMBIENT_TEMPERATURE)
    if ambient is None:
        ambient = report.value(FieldName.AMBIENT_TEMPERATURE)
    reflected = _best_value(thermal, FieldName.REFLECTED_TEMPERATURE)
    if reflected is None:
        reflected = report.value(FieldName.REFLECTED_TEMPERATURE)

    return ConsolidatedEvidence(
        test_type=test_type,
        measurement_date=report.value(FieldName.MEASUREMENT_DATE),
        certificate_expiry=expiry,
        date_format=date_format,
        report_tag=_as_text(report.value(FieldName.EQUIPMENT_TAG)),
        photo_tag=_as_text(photo_tag),
        table_tag=_as_text(report.value(FieldName.TABLE_TAG)),
        certificate_serial=_as_text(_best_value(certificates, FieldName.INSTRUMENT_SERIAL)),
        report_serial=_as_text(report.value(FieldName.INSTRUMENT_SERIAL)),
        photo_serial=_as_text(_best_value(visible, FieldName.INSTRUMENT_SERIAL)),
        instrument_serial=_as_text(_best_value(thermal, FieldName.INSTRUMENT_SERIAL)),
        ambient_temperature=_as_float(ambient),
        reflected_temperature=_as_float(reflected),
        display_value=_as_float(_best_value(visible, FieldName.DISPLAY_VALUE)),
        table_value=_as_float(report.value(FieldName.TABLE_VALUE)),
    )
