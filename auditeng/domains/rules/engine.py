"""
Rules Engine - Deterministic compliance evaluation per test type.

Universal calibration checks run for every report, followed by the
checks for its test type. Validator inconsistencies are folded in with
their own severity. The verdict is derived from the final list:

    any CRITICAL            -> REJECTED
    any MAJOR/MINOR         -> APPROVED_WITH_COMMENTS
    otherwise               -> APPROVED

Scores use non-overlapping bands (REJECTED 0-59, APPROVED_WITH_COMMENTS
60-89, APPROVED 90-100) so callers can sort by score.
"""

from __future__ import annotations

import logging
from typing import Callable

from auditeng.domains.extraction.models import FieldName, NormalizedExtraction
from auditeng.domains.validation.dates import DateFormat, is_expired, is_expiring_today, parse_date
from auditeng.domains.validation.models import SEVERITY_ORDER, Inconsistency, Severity, TestType

from .models import NonConformity, RuleEvaluation, Verdict

logger = logging.getLogger(__name__)

__all__ = [
    "GROUND_RESISTANCE_LIMIT",
    "MIN_INSULATION_RESISTANCE",
    "MIN_ABSORPTION_INDEX",
    "DELTA_T_CRITICAL",
    "DELTA_T_ATTENTION",
    "PHASE_COMBINATIONS",
    "SCORE_BANDS",
    "derive_verdict",
    "calculate_score",
    "inconsistency_to_non_conformity",
    "evaluate",
]

GROUND_RESISTANCE_LIMIT = 5.0  # ohm
MIN_INSULATION_RESISTANCE = 100.0  # Mohm
MIN_ABSORPTION_INDEX = 1.4
DELTA_T_CRITICAL = 15.0  # degrees
DELTA_T_ATTENTION = 3.0  # degrees

PHASE_COMBINATIONS: dict[str, FieldName] = {
    "A-B": FieldName.INSULATION_A_B,
    "A-C": FieldName.INSULATION_A_C,
    "B-C": FieldName.INSULATION_B_C,
    "A-G": FieldName.INSULATION_A_G,
    "B-G": FieldName.INSULATION_B_G,
    "C-G": FieldName.INSULATION_C_G,
}

SCORE_BANDS: dict[Verdict, tuple[int, int]] = {
    Verdict.REJECTED: (0, 59),
    Verdict.APPROVED_WITH_COMMENTS: (60, 89),
    Verdict.APPROVED: (90, 100),
}

_CORRECTIVE_ACTIONS = {
    "CERT-001": "Repeat the measurements with an instrument holding a valid calibration certificate.",
    "TAG-001": "Confirm the equipment TAG on site and correct the report or photos.",
    "TEMP-001": "Re-measure the reflected temperature and re-process the thermograms.",
    "SERIAL-001": "Attach the certificate of the instrument actually used for the measurements.",
    "VALOR-001": "Check the transcription of the instrument reading into the report table.",
}

_SEVERITY_PENALTY = {Severity.CRITICAL: 15, Severity.MAJOR: 8, Severity.MINOR: 3}

Check = Callable[[NormalizedExtraction], list[NonConformity]]


def _number(extraction: NormalizedExtraction, name: FieldName) -> float | None:
    value = extraction.value(name)
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _evidence(extraction: NormalizedExtraction, name: FieldName) -> str:
    field = extraction.get(name)
    if not field.is_present:
        return f"{name.value}: not found"
    return f"{name.value} = {field.value} (source: {field.source}, confidence: {field.confidence:.2f})"


# --- Universal checks ---


def check_calibration(
    extraction: NormalizedExtraction,
    inconsistencies: list[Inconsistency],
    date_format: DateFormat = DateFormat.DMY,
) -> list[NonConformity]:
    """
    Calibration expired (CRITICAL), expiring on the measurement day (MINOR)
    or not verifiable because a reported date is unreadable (MAJOR).
    """
    raw_expiry = extraction.value(FieldName.CALIBRATION_EXPIRY_DATE)
    raw_measured = extraction.value(FieldName.MEASUREMENT_DATE)
    expiry = parse_date(raw_expiry, date_format)
    measured = parse_date(raw_measured, date_format)

    unreadable = [
        name
        for name, raw, parsed in (
            (FieldName.CALIBRATION_EXPIRY_DATE, raw_expiry, expiry),
            (FieldName.MEASUREMENT_DATE, raw_measured, measured),
        )
        if raw not in (None, "") and parsed is None
    ]
    if unreadable:
        logger.warning(
            "Unreadable date(s) %s, expected ISO 8601 or %s",
            ", ".join(name.value for name in unreadable),
            date_format.value,
        )
        return [
            NonConformity(
                code="CAL-003",
                severity=Severity.MAJOR,
                description="Calibration validity cannot be verified: unreadable date",
                evidence="; ".join(_evidence(extraction, name) for name in unreadable),
                corrective_action=(
                    f"Report dates as ISO 8601 or {date_format.value} so calibration validity can be checked."
                ),
            )
        ]

    if expiry is None or measured is None:
        return []

    if is_expired(expiry, measured):
        # The validator already reported the same fact
        if any(i.code == "CERT-001" for i in inconsistencies):
            return []
        return [
            NonConformity(
                code="CAL-001",
                severity=Severity.CRITICAL,
                description=f"Instrument calibration expired on {expiry.isoformat()}",
                evidence=f"Measurement date {measured.isoformat()}, calibration expiry {expiry.isoformat()}",
                corrective_action="Recalibrate the instrument and repeat the measurements.",
            )
        ]

    if is_expiring_today(expiry, measured):
        return [
            NonConformity(
                code="CAL-002",
                severity=Severity.MINOR,
                description="Instrument calibration expires on the measurement date",
                evidence=f"Measurement date and calibration expiry both {expiry.isoformat()}",
                corrective_action="Schedule recalibration before the next measurement campaign.",
            )
        ]

    return []


# --- Grounding ---


def check_grounding(extraction: NormalizedExtraction) -> list[NonConformity]:
    findings: list[NonConformity] = []

    resistance = _number(extraction, FieldName.GROUND_RESISTANCE)
    if resistance is not None and resistance > GROUND_RESISTANCE_LIMIT:
        findings.append(
            NonConformity(
                code="GND-001",
                severity=Severity.CRITICAL,
                description=(
                    f"Ground resistance {resistance:g} ohm exceeds the {GROUND_RESISTANCE_LIMIT:g} ohm limit"
                ),
                evidence=_evidence(extraction, FieldName.GROUND_RESISTANCE),
                corrective_action="Improve the grounding system (add rods, treat soil) and re-measure.",
            )
        )

    if not extraction.value(FieldName.PHOTO_WATERMARK):
        findings.append(
            NonConformity(
                code="GND-002",
                severity=Severity.MAJOR,
                description="Measurement photos have no date/location watermark",
                evidence=_evidence(extraction, FieldName.PHOTO_WATERMARK),
                corrective_action="Provide watermarked photos of the measurement points.",
            )
        )

    if not extraction.value(FieldName.TECHNICIAN_SIGNATURE):
        findings.append(
            NonConformity(
                code="GND-003",
                severity=Severity.MAJOR,
                description="Report is not signed by the responsible technician",
                evidence=_evidence(extraction, FieldName.TECHNICIAN_SIGNATURE),
                corrective_action="Have the responsible technician sign the report.",
            )
        )

    return findings


# --- Megger ---


def check_megger(extraction: NormalizedExtraction) -> list[NonConformity]:
    findings: list[NonConformity] = []

    readings: dict[str, float] = {}
    missing: list[str] = []
    for combination, name in PHASE_COMBINATIONS.items():
        value = _number(extraction, name)
        if value is None:
            missing.append(combination)
        else:
            readings[combination] = value

    if missing:
        findings.append(
            NonConformity(
                code="MEG-001",
                severity=Severity.CRITICAL,
                description=f"Missing insulation resistance reading for phase combination(s): {', '.join(missing)}",
                evidence=f"Readings present: {', '.join(readings) or 'none'}",
                corrective_action="Measure and report all six phase combinations (A-B, A-C, B-C, A-G, B-G, C-G).",
            )
        )

    if readings:
        weakest = min(readings, key=readings.__getitem__)
        if readings[weakest] < MIN_INSULATION_RESISTANCE:
            findings.append(
                NonConformity(
                    code="MEG-002",
                    severity=Severity.CRITICAL,
                    description=(
                        f"Insulation resistance {readings[weakest]:g} Mohm on {weakest} is below "
                        f"the {MIN_INSULATION_RESISTANCE:g} Mohm minimum"
                    ),
                    evidence=_evidence(extraction, PHASE_COMBINATIONS[weakest]),
                    corrective_action="Investigate insulation degradation (moisture, contamination) before energizing.",
                )
            )

    absorption = _number(extraction, FieldName.ABSORPTION_INDEX)
    if absorption is not None and absorption < MIN_ABSORPTION_INDEX:
        findings.append(
            NonConformity(
                code="MEG-003",
                severity=Severity.MAJOR,
                description=f"Absorption index {absorption:g} is below {MIN_ABSORPTION_INDEX:g}",
                evidence=_evidence(extraction, FieldName.ABSORPTION_INDEX),
                corrective_action="Dry out or clean the insulation and repeat the test.",
            )
        )

    return findings


# --- Thermography ---


def _delta_t(extraction: NormalizedExtraction) -> tuple[float | None, str]:
    """Reported delta-T, or the spread of the spot readings."""
    delta = _number(extraction, FieldName.DELTA_T)
    if delta is not None:
        return abs(delta), _evidence(extraction, FieldName.DELTA_T)

    spots = extraction.spot_readings
    if len(spots) < 2:
        return None, ""
    hottest = max(spots, key=lambda s: s.temperature)
    coolest = min(spots, key=lambda s: s.temperature)
    return (
        hottest.temperature - coolest.temperature,
        f"{hottest.label} = {hottest.temperature:g}, {coolest.label} = {coolest.temperature:g}",
    )


def check_thermography(extraction: NormalizedExtraction) -> list[NonConformity]:
    findings: list[NonConformity] = []

    delta, evidence = _delta_t(extraction)
    if delta is not None and delta > DELTA_T_CRITICAL:
        findings.append(
            NonConformity(
                code="THERM-001",
                severity=Severity.CRITICAL,
                description=f"Phase-to-phase temperature difference of {delta:.1f} exceeds {DELTA_T_CRITICAL:g}",
                evidence=evidence,
                corrective_action="Repair the hot connection immediately (retighten, clean or replace).",
            )
        )
    elif delta is not None and delta > DELTA_T_ATTENTION:
        findings.append(
            NonConformity(
                code="THERM-002",
                severity=Severity.MINOR,
                description=f"Phase-to-phase temperature difference of {delta:.1f} requires attention",
                evidence=evidence,
                corrective_action="Schedule inspection of the connection at the next maintenance window.",
            )
        )

    missing_load = [
        name.value
        for name in (FieldName.LOAD_CURRENT, FieldName.RATED_CURRENT)
        if extraction.value(name) is None
    ]
    if missing_load:
        findings.append(
            NonConformity(
                code="THERM-003",
                severity=Severity.MAJOR,
                description=f"Mandatory load reading missing: {', '.join(missing_load)}",
                evidence="Load during inspection cannot be verified",
                corrective_action="Record load current and rated current for each inspected circuit.",
            )
        )

    if extraction.value(FieldName.REFLECTED_TEMPERATURE) is None:
        findings.append(
            NonConformity(
                code="THERM-004",
                severity=Severity.MINOR,
                description="Reflected temperature is not documented",
                evidence=_evidence(extraction, FieldName.REFLECTED_TEMPERATURE),
                corrective_action="Document the reflected apparent temperature used for each thermogram.",
            )
        )

    return findings


_TEST_TYPE_CHECKS: dict[TestType, Check] = {
    TestType.GROUNDING: check_grounding,
    TestType.MEGGER: check_megger,
    TestType.THERMOGRAPHY: check_thermography,
}


def inconsistency_to_non_conformity(inconsistency: Inconsistency) -> NonConformity:
    """Fold a validator finding in with its own severity."""
    return NonConformity(
        code=inconsistency.code,
        severity=inconsistency.severity,
        description=inconsistency.message,
        evidence=f"{inconsistency.field}: expected {inconsistency.expected}, found {inconsistency.found}",
        corrective_action=_CORRECTIVE_ACTIONS.get(
            inconsistency.code, "Reconcile the conflicting evidence sources."
        ),
    )


def derive_verdict(non_conformities: list[NonConformity]) -> Verdict:
    """
    Derive the verdict from a non-conformity list.

    Example:
        >>> derive_verdict([])
        <Verdict.APPROVED: 'APPROVED'>
    """
    severities = {nc.severity for nc in non_conformities}
    if Severity.CRITICAL in severities:
        return Verdict.REJECTED
    if severities:
        return Verdict.APPROVED_WITH_COMMENTS
    return Verdict.APPROVED


def calculate_score(
    verdict: Verdict,
    non_conformities: list[NonConformity],
    confidence: float = 1.0,
) -> int:
    """
    Score within the verdict's band.

    Falls with the number and severity of findings and with low
    extraction confidence; always stays inside the band.

    Args:
        verdict: Derived verdict
        non_conformities: Findings behind the verdict
        confidence: Mean field confidence (0-1)

    Returns:
        Integer score in [0, 100]
    """
    low, high = SCORE_BANDS[verdict]
    confidence = max(0.0, min(1.0, confidence))

    if verdict is Verdict.APPROVED:
        return low + round((high - low) * confidence)

    penalty = sum(_SEVERITY_PENALTY[nc.severity] for nc in non_conformities)
    penalty += round(10 * (1 - confidence))
    return max(low, high - penalty)


def evaluate(
    test_type: TestType,
    extraction: NormalizedExtraction,
    inconsistencies: list[Inconsistency] | None = None,
    date_format: DateFormat = DateFormat.DMY,
) -> RuleEvaluation:
    """
    Evaluate a report.

    Args:
        test_type: Test documented by the report
        extraction: All fields (report body merged with images)
        inconsistencies: Validator findings for the same report
        date_format: Day/month order of slashed dates

    Returns:
        Non-conformities (most severe first), verdict and score

    Example:
        >>> result = evaluate(TestType.GROUNDING, extraction, [])
        >>> result.verdict
        <Verdict.REJECTED: 'REJECTED'>
    """
    inconsistencies = inconsistencies or []

    findings = check_calibration(extraction, inconsistencies, date_format)
    findings.extend(_TEST_TYPE_CHECKS[test_type](extraction))
    findings.extend(inconsistency_to_non_conformity(i) for i in inconsistencies)

    # Stable: equal severities keep evaluation order
    findings.sort(key=lambda nc: SEVERITY_ORDER[nc.severity])

    verdict = derive_verdict(findings)
    score = calculate_score(verdict, findings, extraction.mean_confidence)

    logger.info(
        "Rules evaluation for %s: %s (score %d, %d non-conformities)",
        test_type.value,
        verdict.value,
        score,
        len(findings),
    )
    return RuleEvaluation(non_conformities=findings, verdict=verdict, score=score)
