"""
Extraction Domain - Document images to confidence-tagged fields.

This domain handles:
- Resilient vision-model calls (retry, fallback, circuit breaker)
- Thermal image, visible photo and calibration certificate extractors
- Tolerant normalization of model JSON
- Batch extraction with equipment identification merge
- Cost and token estimation
"""

from .batch import BatchExtractor
from .client import CircuitBreaker, CircuitState, ResilientExtractionClient
from .contracts import Extractor, ExtractorSpec, VisionModel
from .extractors import CertificateSpec, ThermalImageSpec, VisiblePhotoSpec, build_spec
from .models import (
    NOT_FOUND,
    BatchExtractionResult,
    DocumentImage,
    ExtractedField,
    ExtractionConfig,
    ExtractionHints,
    ExtractionKind,
    ExtractionMetrics,
    ExtractionResult,
    FieldName,
    NormalizedExtraction,
    PromptContext,
    SpotReading,
)

__all__ = [
    # Contracts
    "Extractor",
    "ExtractorSpec",
    "VisionModel",
    # Models
    "NOT_FOUND",
    "BatchExtractionResult",
    "DocumentImage",
    "ExtractedField",
    "ExtractionConfig",
    "ExtractionHints",
    "ExtractionKind",
    "ExtractionMetrics",
    "ExtractionResult",
    "FieldName",
    "NormalizedExtraction",
    "PromptContext",
    "SpotReading",
    # Implementations
    "BatchExtractor",
    "CircuitBreaker",
    "CircuitState",
    "ResilientExtractionClient",
    "CertificateSpec",
    "ThermalImageSpec",
    "VisiblePhotoSpec",
    "build_spec",
]
