"""
Response Normalization - Tolerant parsing of model JSON into ExtractedFields.

Malformed or missing values never raise; they become not-found fields.
Only a response with no JSON object at all is treated as invalid.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import date, datetime
from typing import Any, Literal

from auditeng.config.errors import InvalidResponseError
from auditeng.domains.validation.dates import DateFormat, parse_date

from .models import ExtractedField, SpotReading

logger = logging.getLogger(__name__)

__all__ = [
    "clamp_confidence",
    "normalize_field",
    "normalize_spot_readings",
    "parse_json_payload",
]

ValueKind = Literal["string", "number", "date", "bool"]


def parse_json_payload(text: str | None) -> dict[str, Any]:
    """
    Parse the model's JSON object, tolerating surrounding prose or fences.

    Raises:
        InvalidResponseError: No JSON object can be recovered
    """
    if not text or not text.strip():
        raise InvalidResponseError("Empty response from model")

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            raise InvalidResponseError("No JSON object in model response", {"preview": text[:80]})
        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            raise InvalidResponseError(f"Malformed JSON in model response: {e}") from e

    if not isinstance(data, dict):
        raise InvalidResponseError("Model response is not a JSON object")
    return data


def clamp_confidence(raw: Any) -> float:
    """Clamp to [0, 1]; anything non-numeric becomes 0."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0.0
    if raw != raw:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(raw)))


def _coerce(value: Any, kind: ValueKind) -> Any:
    """Coerce a raw value; returns None when it does not fit the kind."""
    if kind == "string":
        if isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        return text or None

    if kind == "number":
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            try:
                number = float(value.strip().replace(",", "."))
            except ValueError:
                return None
        else:
            return None
        # NaN and infinities are not readings
        return number if math.isfinite(number) else None

    if kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "yes"):
            return True
        if isinstance(value, str) and value.strip().lower() in ("false", "no"):
            return False
        return None

    # date: keep strings readable as ISO or slashed dates, as the original text;
    # day/month order is resolved later with the configured format
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, str):
        candidate = value.strip()
        if any(parse_date(candidate, fmt) is not None for fmt in DateFormat):
            return candidate
    return None


def normalize_field(
    raw: Any,
    source: str,
    kind: ValueKind = "string",
    reason: str | None = None,
) -> ExtractedField:
    """
    Normalize one model field of shape ``{"value", "confidence", "source"}``.

    Args:
        raw: Raw JSON value from the model
        source: Evidence source name recorded on the field
        kind: Expected value type
        reason: Reason recorded when the field is not found

    Returns:
        ExtractedField (not-found when missing or malformed)
    """
    if not isinstance(raw, dict) or raw.get("value") is None:
        return ExtractedField.not_found(reason)

    value = _coerce(raw["value"], kind)
    if value is None:
        logger.debug("Discarding malformed %s value from %s: %r", kind, source, raw["value"])
        return ExtractedField.not_found(f"Malformed value: {raw['value']!r}")

    return ExtractedField(
        value=value,
        confidence=clamp_confidence(raw.get("confidence")),
        source=source,
    )


def normalize_spot_readings(raw: Any) -> list[SpotReading]:
    """Keep only spot readings with a label and a numeric temperature value."""
    if not isinstance(raw, list):
        return []

    readings: list[SpotReading] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("label"):
            continue
        temperature = entry.get("temperature")
        if not isinstance(temperature, dict):
            continue
        value = _coerce(temperature.get("value"), "number") if temperature.get("value") is not None else None
        if value is None:
            continue
        readings.append(
            SpotReading(
                label=str(entry["label"]),
                temperature=value,
                confidence=clamp_confidence(temperature.get("confidence")),
            )
        )
    return readings
