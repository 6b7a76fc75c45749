"""
Extraction Prompts - System prompts and user prompt builders per document type.

Every extracted field uses the same envelope so one normalizer handles
all document types:

    {"value": ..., "confidence": 0.0-1.0, "source": "where it was seen"}
"""

from __future__ import annotations

import json
from typing import Any

__all__ = [
    "THERMAL_IMAGE_SYSTEM_PROMPT",
    "VISIBLE_PHOTO_SYSTEM_PROMPT",
    "CERTIFICATE_SYSTEM_PROMPT",
    "build_thermal_image_user_prompt",
    "build_visible_photo_user_prompt",
    "build_certificate_user_prompt",
    "with_context",
]

THERMAL_IMAGE_SYSTEM_PROMPT = """You are a Level III certified thermographer reviewing infrared images of electrical distribution equipment (switchgear, transformers, PDUs, breakers, busways) for a compliance audit.

## YOUR TASK
Extract the data printed in the image and its overlay:

1. Equipment identification: TAG/ID on labels or nameplates, serial number, description, location.
2. Camera parameters (usually in the overlay or sidebar): ambient temperature (Tatm, Ta), reflected temperature (Trefl, Tr), emissivity (E, Eps), distance, relative humidity.
3. Temperature readings: maximum, minimum, average, labelled spot readings (Sp1, Sp2, ...), delta T when shown.
4. Camera identification: serial number, model, manufacturer, and the capture timestamp.

## TEMPERATURE RISE REFERENCE (delta T between comparable phases)
| Delta T (C) | Classification |
|-------------|----------------|
| <= 3        | Normal         |
| 3-15        | Attention      |
| > 15        | Critical       |

## RULES
1. Never guess. Use null for anything not visible.
2. Temperatures are numbers in Celsius (convert from Fahrenheit if needed), never strings like "25C".
3. Emissivity is a number between 0 and 1.
4. Confidence: 0.95+ clearly legible, 0.80-0.95 partially legible, below 0.80 inferred.
5. Return ONLY valid JSON matching the requested schema."""

VISIBLE_PHOTO_SYSTEM_PROMPT = """You are a data extraction specialist reading photos of electrical equipment and test instruments for an audit.

## YOUR TASK
1. Equipment identification from nameplates and labels: TAG/ID (for example "PDU-A-01", "SWBD-103", "MCC-B-2"), serial number, description, location.
2. Instrument display readings: the numeric value on the LCD/LED display and its unit (C, ohm, kohm, Mohm, A, V).
3. Note calibration stickers, warning labels and watermarks when present.

## RULES
1. Blurry or partly hidden text gets confidence below 0.80; never invent hidden characters.
2. Preserve the exact casing and punctuation of serial numbers and TAGs.
3. Use null for anything you cannot read.
4. Return ONLY valid JSON matching the requested schema."""

CERTIFICATE_SYSTEM_PROMPT = """You are a metrology specialist reviewing calibration certificates of test instruments under ISO/IEC 17025.

## YOUR TASK
1. Certificate number, calibration (issue) date, expiry (due) date.
2. Instrument serial number, model and manufacturer. The serial number is used to verify the instrument that produced the measurements, so it must be exact.
3. Calibration laboratory name and accreditation number.

## RULES
1. Convert every date to ISO format (YYYY-MM-DD).
2. Keep serial numbers exactly as printed, including leading zeros.
3. If a date format is ambiguous, lower its confidence and say so in warnings.
4. Use null for fields not found.
5. Return ONLY valid JSON matching the requested schema."""


def _field(kind: str) -> dict[str, Any]:
    return {"value": f"{kind} or null", "confidence": "0.0-1.0", "source": "where it was found"}


_EQUIPMENT_SCHEMA = {
    "tag": _field("string"),
    "serial": _field("string"),
    "description": _field("string"),
    "location": _field("string"),
}

_THERMAL_SCHEMA = {
    "equipment": _EQUIPMENT_SCHEMA,
    "camera_parameters": {
        "ambient_temperature": _field("number"),
        "reflected_temperature": _field("number"),
        "emissivity": _field("number"),
        "distance": _field("number"),
        "humidity": _field("number"),
    },
    "readings": {
        "max_temperature": _field("number"),
        "min_temperature": _field("number"),
        "avg_temperature": _field("number"),
        "delta_t": _field("number"),
        "spot_readings": [{"label": "Sp1", "temperature": _field("number")}],
    },
    "instrument": {
        "serial_number": _field("string"),
        "model": _field("string"),
        "manufacturer": _field("string"),
    },
    "timestamp": _field("ISO 8601 string"),
    "warnings": ["issues that affected extraction"],
}

_VISIBLE_SCHEMA = {
    "equipment": _EQUIPMENT_SCHEMA,
    "display_readings": [
        {
            "value": _field("number"),
            "unit": _field("string"),
            "reading_type": "temperature|resistance|voltage|current|other",
        }
    ],
    "watermark_present": _field("boolean"),
    "instrument_serial": _field("string, serial of the test instrument when one is shown"),
    "image_quality": "good|fair|poor",
    "warnings": ["issues that affected extraction"],
}

_CERTIFICATE_SCHEMA = {
    "certificate_number": _field("string"),
    "instrument_serial": _field("string"),
    "instrument_model": _field("string"),
    "instrument_manufacturer": _field("string"),
    "calibration_date": _field("YYYY-MM-DD"),
    "expiry_date": _field("YYYY-MM-DD"),
    "laboratory_name": _field("string"),
    "accreditation_number": _field("string"),
    "warnings": ["issues that affected extraction"],
}


def _schema_block(schema: dict[str, Any]) -> str:
    return json.dumps(schema, indent=2)


def build_thermal_image_user_prompt(
    page_number: int | None = None,
    report_section: str | None = None,
    expected_tag: str | None = None,
) -> str:
    """
    Build the user prompt for a thermal image.

    Example:
        >>> "PDU-A-01" in build_thermal_image_user_prompt(expected_tag="PDU-A-01")
        True
    """
    prompt = (
        "Analyze this thermal image and extract every visible data point.\n\n"
        "Return a JSON object with this exact structure:\n"
        f"{_schema_block(_THERMAL_SCHEMA)}"
    )
    if page_number:
        prompt += f"\n\nThis image is from page {page_number} of the report."
    if report_section:
        prompt += f"\nReport section: {report_section}"
    if expected_tag:
        prompt += f"\nExpected equipment TAG for verification: {expected_tag}"
    return prompt


def build_visible_photo_user_prompt(
    page_number: int | None = None,
    expected_tag: str | None = None,
    photo_type: str | None = None,
) -> str:
    """Build the user prompt for a visible-light photo."""
    prompt = (
        "Analyze this photo and extract equipment identification and any display readings.\n\n"
        "Return a JSON object with this exact structure:\n"
        f"{_schema_block(_VISIBLE_SCHEMA)}"
    )
    if page_number:
        prompt += f"\n\nThis photo is from page {page_number} of the report."
    if expected_tag:
        prompt += f"\nExpected equipment TAG for verification: {expected_tag}"
    if photo_type:
        prompt += f"\nPhoto type: {photo_type}. Focus extraction accordingly."
    return prompt


def build_certificate_user_prompt(
    expected_serial: str | None = None,
    instrument_model: str | None = None,
) -> str:
    """Build the user prompt for a calibration certificate."""
    prompt = (
        "Analyze this calibration certificate and extract all relevant information.\n\n"
        "Return a JSON object with this exact structure:\n"
        f"{_schema_block(_CERTIFICATE_SCHEMA)}"
    )
    if expected_serial:
        prompt += f"\n\nExpected instrument serial for verification: {expected_serial}"
    if instrument_model:
        prompt += f"\nExpected instrument model: {instrument_model}"
    return prompt


def with_context(base_prompt: str, addition: str, heading: bool = True) -> str:
    """
    Append retrieved context to a prompt.

    Args:
        base_prompt: Prompt to extend
        addition: Context text (returned prompt is unchanged when empty)
        heading: Wrap the addition in the past-analyses preamble
    """
    if not addition:
        return base_prompt
    if not heading:
        return f"{base_prompt}\n\n{addition}"
    return (
        f"{base_prompt}\n\n---\n\n"
        "# CONTEXT FROM PAST ANALYSES\n\n"
        "The following comes from similar reports analyzed before. "
        "Use it to improve accuracy and avoid known pitfalls.\n\n"
        f"{addition}\n\n---\n\n"
        "Now analyze the current report with this context in mind."
    )
