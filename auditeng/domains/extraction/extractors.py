"""
Typed Extractors - Prompt building and response normalization per document type.

Each spec is consumed by ResilientExtractionClient.extract(); the client
owns retries and the circuit breaker, the spec owns the document semantics.
"""

from __future__ import annotations

import logging
from typing import Any

from .models import (
    DocumentImage,
    ExtractedField,
    ExtractionHints,
    ExtractionKind,
    FieldName,
    NormalizedExtraction,
    PromptContext,
)
from .normalize import normalize_field, normalize_spot_readings, parse_json_payload
from .prompts import (
    CERTIFICATE_SYSTEM_PROMPT,
    THERMAL_IMAGE_SYSTEM_PROMPT,
    VISIBLE_PHOTO_SYSTEM_PROMPT,
    build_certificate_user_prompt,
    build_thermal_image_user_prompt,
    build_visible_photo_user_prompt,
    with_context,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ThermalImageSpec",
    "VisiblePhotoSpec",
    "CertificateSpec",
    "build_spec",
    "source_name",
]

_SOURCE_PREFIX = {
    ExtractionKind.THERMAL: "thermal_image",
    ExtractionKind.VISIBLE: "visible_photo",
    ExtractionKind.CERTIFICATE: "certificate",
}


def source_name(kind: ExtractionKind, position: int) -> str:
    """
    Evidence source name for the Nth image of a kind (1-indexed).

    Example:
        >>> source_name(ExtractionKind.THERMAL, 2)
        'thermal_image_2'
    """
    return f"{_SOURCE_PREFIX[kind]}_{position}"


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


class _DocumentSpec:
    """Shared plumbing: image list and retrieved-context layering."""

    kind: ExtractionKind
    system_prompt: str = ""

    def __init__(
        self,
        image: DocumentImage,
        source: str,
        hints: ExtractionHints | None = None,
        context: PromptContext | None = None,
    ) -> None:
        self.image = image
        self.source = source
        self.hints = hints or ExtractionHints()
        self.context = context or PromptContext()

    def images(self) -> list[str]:
        return [self.image.image]

    def build_system_prompt(self) -> str:
        return with_context(self.system_prompt, self.context.system_addition)

    def build_user_prompt(self) -> str:
        return with_context(self._user_prompt(), self.context.user_hints, heading=False)

    def _user_prompt(self) -> str:
        raise NotImplementedError

    def _field(self, raw: Any, kind: str = "string") -> ExtractedField:
        return normalize_field(raw, self.source, kind)  # type: ignore[arg-type]

    def _equipment_fields(self, data: dict[str, Any]) -> dict[str, ExtractedField]:
        equipment = _section(data, "equipment")
        return {
            FieldName.EQUIPMENT_TAG.value: self._field(equipment.get("tag")),
            FieldName.EQUIPMENT_SERIAL.value: self._field(equipment.get("serial")),
            FieldName.EQUIPMENT_DESCRIPTION.value: self._field(equipment.get("description")),
            FieldName.EQUIPMENT_LOCATION.value: self._field(equipment.get("location")),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(source={self.source!r})"


class ThermalImageSpec(_DocumentSpec):
    """Infrared image: camera parameters, temperatures and spot readings."""

    kind = ExtractionKind.THERMAL
    system_prompt = THERMAL_IMAGE_SYSTEM_PROMPT

    def _user_prompt(self) -> str:
        return build_thermal_image_user_prompt(
            page_number=self.image.page_number,
            report_section=self.image.report_section,
            expected_tag=self.hints.expected_tag,
        )

    def parse_response(self, content: str) -> NormalizedExtraction:
        data = parse_json_payload(content)
        camera = _section(data, "camera_parameters")
        readings = _section(data, "readings")
        instrument = _section(data, "instrument")

        fields = self._equipment_fields(data)
        fields.update(
            {
                FieldName.AMBIENT_TEMPERATURE.value: self._field(camera.get("ambient_temperature"), "number"),
                FieldName.REFLECTED_TEMPERATURE.value: self._field(camera.get("reflected_temperature"), "number"),
                FieldName.EMISSIVITY.value: self._field(camera.get("emissivity"), "number"),
                FieldName.DISTANCE.value: self._field(camera.get("distance"), "number"),
                FieldName.HUMIDITY.value: self._field(camera.get("humidity"), "number"),
                FieldName.MAX_TEMPERATURE.value: self._field(readings.get("max_temperature"), "number"),
                FieldName.MIN_TEMPERATURE.value: self._field(readings.get("min_temperature"), "number"),
                FieldName.AVG_TEMPERATURE.value: self._field(readings.get("avg_temperature"), "number"),
                FieldName.DELTA_T.value: self._field(readings.get("delta_t"), "number"),
                FieldName.INSTRUMENT_SERIAL.value: self._field(instrument.get("serial_number")),
                FieldName.INSTRUMENT_MODEL.value: self._field(instrument.get("model")),
                FieldName.INSTRUMENT_MANUFACTURER.value: self._field(instrument.get("manufacturer")),
                FieldName.IMAGE_TIMESTAMP.value: self._field(data.get("timestamp"), "date"),
            }
        )

        return NormalizedExtraction(
            source=self.source,
            fields=fields,
            spot_readings=normalize_spot_readings(readings.get("spot_readings")),
        )


class VisiblePhotoSpec(_DocumentSpec):
    """Visible-light photo: nameplate identification and instrument display."""

    kind = ExtractionKind.VISIBLE
    system_prompt = VISIBLE_PHOTO_SYSTEM_PROMPT

    def _user_prompt(self) -> str:
        return build_visible_photo_user_prompt(
            page_number=self.image.page_number,
            expected_tag=self.hints.expected_tag,
            photo_type=self.image.photo_type,
        )

    def parse_response(self, content: str) -> NormalizedExtraction:
        data = parse_json_payload(content)
        fields = self._equipment_fields(data)

        # First display reading with a usable value is the one compared to the table
        display_value = ExtractedField.not_found()
        display_unit = ExtractedField.not_found()
        readings = data.get("display_readings")
        for reading in readings if isinstance(readings, list) else []:
            if not isinstance(reading, dict):
                continue
            candidate = self._field(reading.get("value"), "number")
            if candidate.is_present:
                display_value = candidate
                display_unit = self._field(reading.get("unit"))
                break

        fields[FieldName.DISPLAY_VALUE.value] = display_value
        fields[FieldName.DISPLAY_UNIT.value] = display_unit
        fields[FieldName.PHOTO_WATERMARK.value] = self._field(data.get("watermark_present"), "bool")
        fields[FieldName.INSTRUMENT_SERIAL.value] = self._field(data.get("instrument_serial"))

        return NormalizedExtraction(source=self.source, fields=fields)


class CertificateSpec(_DocumentSpec):
    """Calibration certificate: dates, laboratory and instrument serial."""

    kind = ExtractionKind.CERTIFICATE
    system_prompt = CERTIFICATE_SYSTEM_PROMPT

    def _user_prompt(self) -> str:
        return build_certificate_user_prompt(
            expected_serial=self.hints.expected_serial,
            instrument_model=self.hints.instrument_model,
        )

    def parse_response(self, content: str) -> NormalizedExtraction:
        data = parse_json_payload(content)
        fields = {
            FieldName.CERTIFICATE_NUMBER.value: self._field(data.get("certificate_number")),
            FieldName.INSTRUMENT_SERIAL.value: self._field(data.get("instrument_serial")),
            FieldName.INSTRUMENT_MODEL.value: self._field(data.get("instrument_model")),
            FieldName.INSTRUMENT_MANUFACTURER.value: self._field(data.get("instrument_manufacturer")),
            FieldName.CALIBRATION_DATE.value: self._field(data.get("calibration_date"), "date"),
            FieldName.CALIBRATION_EXPIRY_DATE.value: self._field(data.get("expiry_date"), "date"),
            FieldName.LABORATORY_NAME.value: self._field(data.get("laboratory_name")),
            FieldName.ACCREDITATION_NUMBER.value: self._field(data.get("accreditation_number")),
        }
        return NormalizedExtraction(source=self.source, fields=fields)


_SPECS: dict[ExtractionKind, type[_DocumentSpec]] = {
    ExtractionKind.THERMAL: ThermalImageSpec,
    ExtractionKind.VISIBLE: VisiblePhotoSpec,
    ExtractionKind.CERTIFICATE: CertificateSpec,
}


def build_spec(
    image: DocumentImage,
    source: str,
    hints: ExtractionHints | None = None,
    context: PromptContext | None = None,
) -> _DocumentSpec:
    """
    Build the extractor spec matching an image's kind.

    Args:
        image: Document image
        source: Evidence source name (e.g. "thermal_image_1")
        hints: Expected tag/serial for cross-checking
        context: Retrieved prompt context

    Returns:
        ThermalImageSpec, VisiblePhotoSpec or CertificateSpec
    """
    return _SPECS[image.kind](image, source, hints=hints, context=context)
