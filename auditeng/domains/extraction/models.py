"""
Extraction Models - Data types for vision extraction domain.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


NOT_FOUND = "not_found"


class ExtractionKind(str, Enum):
    """Document image types with a dedicated extractor."""

    THERMAL = "thermal"
    VISIBLE = "visible"
    CERTIFICATE = "certificate"


class FieldName(str, Enum):
    """Semantic field names shared by extractors, validator and rules."""

    # Equipment identification
    EQUIPMENT_TAG = "equipment_tag"
    EQUIPMENT_SERIAL = "equipment_serial"
    EQUIPMENT_DESCRIPTION = "equipment_description"
    EQUIPMENT_LOCATION = "equipment_location"

    # Thermal camera parameters
    AMBIENT_TEMPERATURE = "ambient_temperature"
    REFLECTED_TEMPERATURE = "reflected_temperature"
    EMISSIVITY = "emissivity"
    DISTANCE = "distance"
    HUMIDITY = "humidity"

    # Thermal readings
    MAX_TEMPERATURE = "max_temperature"
    MIN_TEMPERATURE = "min_temperature"
    AVG_TEMPERATURE = "avg_temperature"
    DELTA_T = "delta_t"

    # Instrument identification
    INSTRUMENT_SERIAL = "instrument_serial"
    INSTRUMENT_MODEL = "instrument_model"
    INSTRUMENT_MANUFACTURER = "instrument_manufacturer"
    IMAGE_TIMESTAMP = "image_timestamp"

    # Instrument display (visible photos)
    DISPLAY_VALUE = "display_value"
    DISPLAY_UNIT = "display_unit"

    # Calibration certificate
    CERTIFICATE_NUMBER = "certificate_number"
    CALIBRATION_DATE = "calibration_date"
    CALIBRATION_EXPIRY_DATE = "calibration_expiry_date"
    LABORATORY_NAME = "laboratory_name"
    ACCREDITATION_NUMBER = "accreditation_number"

    # Report body
    MEASUREMENT_DATE = "measurement_date"
    TABLE_TAG = "table_tag"
    TABLE_VALUE = "table_value"
    GROUND_RESISTANCE = "ground_resistance"
    PHOTO_WATERMARK = "photo_watermark"
    TECHNICIAN_SIGNATURE = "technician_signature"
    INSULATION_A_B = "insulation_resistance_a_b"
    INSULATION_A_C = "insulation_resistance_a_c"
    INSULATION_B_C = "insulation_resistance_b_c"
    INSULATION_A_G = "insulation_resistance_a_g"
    INSULATION_B_G = "insulation_resistance_b_g"
    INSULATION_C_G = "insulation_resistance_c_g"
    ABSORPTION_INDEX = "absorption_index"
    LOAD_CURRENT = "load_current"
    RATED_CURRENT = "rated_current"


class ExtractedField(BaseModel):
    """
    One fact pulled from one evidence source.

    A missing value always carries zero confidence and the "not_found" source.

    Example:
        >>> ExtractedField(value=None, confidence=0.9, source="thermal_image_1")
        ExtractedField(value=None, confidence=0.0, source='not_found', reason=None)
    """

    value: Any = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: str = NOT_FOUND
    reason: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _missing_value_has_no_confidence(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("value") is None:
            data = {**data, "confidence": 0.0, "source": NOT_FOUND}
        return data

    @classmethod
    def not_found(cls, reason: str | None = None) -> ExtractedField:
        """Build the canonical missing field."""
        return cls(value=None, reason=reason)

    @property
    def is_present(self) -> bool:
        return self.value is not None


class SpotReading(BaseModel):
    """Labelled spot temperature from a thermal image."""

    label: str
    temperature: float
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    model_config = {"frozen": True}


class NormalizedExtraction(BaseModel):
    """
    Semantic field name to ExtractedField mapping for one source.

    Instances are never mutated; merge() returns a new instance.
    """

    source: str = ""
    fields: dict[str, ExtractedField] = Field(default_factory=dict)
    spot_readings: list[SpotReading] = Field(default_factory=list)

    model_config = {"frozen": True}

    def get(self, name: str | FieldName) -> ExtractedField:
        """Get a field, or the not-found field when absent."""
        key = name.value if isinstance(name, Enum) else name
        return self.fields.get(key, ExtractedField.not_found())

    def value(self, name: str | FieldName) -> Any:
        """Get a field's value (None when absent)."""
        return self.get(name).value

    def present_fields(self) -> dict[str, ExtractedField]:
        """Fields with a non-null value."""
        return {name: f for name, f in self.fields.items() if f.is_present}

    @property
    def mean_confidence(self) -> float:
        """Mean confidence across present fields (0 when empty)."""
        present = self.present_fields()
        if not present:
            return 0.0
        return sum(f.confidence for f in present.values()) / len(present)

    def merge(self, other: NormalizedExtraction, source: str | None = None) -> NormalizedExtraction:
        """
        Merge with a later source.

        For each field the non-null candidate with the highest confidence
        wins; on equal confidence this (earlier) extraction wins.
        """
        fields = dict(self.fields)
        for name, candidate in other.fields.items():
            current = fields.get(name)
            if not candidate.is_present:
                fields.setdefault(name, candidate)
                continue
            if current is None or not current.is_present or candidate.confidence > current.confidence:
                fields[name] = candidate

        return NormalizedExtraction(
            source=source if source is not None else self.source,
            fields=fields,
            spot_readings=[*self.spot_readings, *other.spot_readings],
        )

    @classmethod
    def merge_all(
        cls, extractions: list[NormalizedExtraction], source: str = "merged"
    ) -> NormalizedExtraction:
        """Merge extractions in order (earlier wins ties)."""
        merged = cls(source=source)
        for extraction in extractions:
            merged = merged.merge(extraction, source=source)
        return merged


class DocumentImage(BaseModel):
    """One page image of a report to run through an extractor."""

    image: str = Field(..., min_length=1, description="URL, data URI or raw base64")
    kind: ExtractionKind
    page_number: int | None = None
    report_section: str | None = None
    photo_type: str | None = None

    model_config = {"frozen": True}


class ExtractionHints(BaseModel):
    """Expected values used for targeted cross-checking in prompts."""

    expected_tag: str | None = None
    expected_serial: str | None = None
    instrument_model: str | None = None

    model_config = {"frozen": True}


class PromptContext(BaseModel):
    """Retrieved context layered onto extractor prompts."""

    system_addition: str = ""
    user_hints: str = ""
    embedding_ids: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.system_addition and not self.user_hints


class ExtractionMetrics(BaseModel):
    """Cost and latency accounting for one extraction call."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    latency_ms: float = 0.0
    retry_count: int = 0
    model_used: str = ""
    image_count: int = 0


class ExtractionResult(BaseModel):
    """Outcome of one resilient extraction call."""

    success: bool
    data: NormalizedExtraction | None = None
    error: str | None = None
    metrics: ExtractionMetrics = Field(default_factory=ExtractionMetrics)


class SourcedExtraction(BaseModel):
    """Normalized extraction tagged with its batch source name."""

    source: str
    kind: ExtractionKind
    extraction: NormalizedExtraction

    model_config = {"frozen": True}


class EquipmentIdentification(BaseModel):
    """Equipment tag and serial merged across a batch."""

    tag: ExtractedField = Field(default_factory=ExtractedField.not_found)
    serial: ExtractedField = Field(default_factory=ExtractedField.not_found)

    model_config = {"frozen": True}


class BatchFailure(BaseModel):
    """Image that failed extraction and was skipped."""

    source: str
    error: str


class BatchExtractionResult(BaseModel):
    """Outcome of a batch run over several report images."""

    extractions: list[SourcedExtraction] = Field(default_factory=list)
    equipment: EquipmentIdentification = Field(default_factory=EquipmentIdentification)
    failures: list[BatchFailure] = Field(default_factory=list)
    total_tokens: int = 0
    total_cost: float = 0.0
    processing_ms: float = 0.0

    @property
    def processed_count(self) -> int:
        return len(self.extractions)

    def by_kind(self, kind: ExtractionKind) -> list[SourcedExtraction]:
        """Extractions of one document kind, in input order."""
        return [e for e in self.extractions if e.kind == kind]

    def merged(self) -> NormalizedExtraction:
        """All image fields merged (earlier sources win ties)."""
        return NormalizedExtraction.merge_all([e.extraction for e in self.extractions], source="images")


class ExtractionConfig(BaseModel):
    """Configuration for the resilient extraction client."""

    model: str = "gpt-4o"
    fallback_model: str | None = "gpt-4o-mini"
    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_ms: int = Field(default=10000, ge=0)
    timeout_seconds: float = Field(default=60.0, gt=0)
    vision_detail: str = Field(default="high", pattern="^(low|high|auto)$")
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_reset_seconds: float = Field(default=60.0, ge=0)

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, settings: Any) -> ExtractionConfig:
        """Build from application Settings."""
        return cls(
            model=settings.extraction_model,
            fallback_model=settings.extraction_fallback_model,
            max_retries=settings.extraction_max_retries,
            initial_delay_ms=settings.extraction_initial_delay_ms,
            backoff_multiplier=settings.extraction_backoff_multiplier,
            max_delay_ms=settings.extraction_max_delay_ms,
            timeout_seconds=settings.extraction_timeout_seconds,
            vision_detail=settings.vision_detail,
            circuit_failure_threshold=settings.circuit_failure_threshold,
            circuit_reset_seconds=settings.circuit_reset_seconds,
        )
