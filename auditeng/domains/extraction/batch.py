"""
Batch Extractor - Runs every report image through its typed extractor.

Failed images are logged and skipped. Equipment identification is merged
across images by confidence, with input order breaking ties, so the
result does not depend on completion order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter

from .contracts import Extractor
from .extractors import build_spec, source_name
from .models import (
    BatchExtractionResult,
    BatchFailure,
    DocumentImage,
    EquipmentIdentification,
    ExtractedField,
    ExtractionHints,
    ExtractionResult,
    FieldName,
    PromptContext,
    SourcedExtraction,
)

logger = logging.getLogger(__name__)

__all__ = ["BatchExtractor", "pick_best_field"]


def pick_best_field(candidates: list[ExtractedField]) -> ExtractedField:
    """
    Pick the highest-confidence present field; the earliest wins ties.

    Example:
        >>> a = ExtractedField(value="EQ-01", confidence=0.8, source="thermal_image_1")
        >>> b = ExtractedField(value="EQ-1", confidence=0.8, source="visible_photo_1")
        >>> pick_best_field([a, b]).source
        'thermal_image_1'
    """
    best = ExtractedField.not_found()
    for candidate in candidates:
        if not candidate.is_present:
            continue
        if not best.is_present or candidate.confidence > best.confidence:
            best = candidate
    return best


class BatchExtractor:
    """
    Extract a list of document images with one resilient client.

    Example:
        >>> batch = BatchExtractor(client)
        >>> result = await batch.extract_batch(images, hints=ExtractionHints(expected_tag="PDU-A-01"))
        >>> print(result.equipment.tag.value, result.total_cost)
    """

    def __init__(self, client: Extractor, max_concurrent: int = 1) -> None:
        """
        Initialize batch extractor.

        Args:
            client: Extraction client (shares its circuit breaker across the batch)
            max_concurrent: Images extracted at once; 1 runs sequentially
        """
        self._client = client
        self.max_concurrent = max(1, max_concurrent)

    async def extract_batch(
        self,
        images: list[DocumentImage],
        hints: ExtractionHints | None = None,
        context: PromptContext | None = None,
    ) -> BatchExtractionResult:
        """
        Extract all images.

        Args:
            images: Report images in report order
            hints: Expected tag/serial passed to every extractor
            context: Retrieved prompt context layered onto every prompt

        Returns:
            Batch result with per-source extractions, merged equipment and totals
        """
        start = time.perf_counter()

        counters: Counter = Counter()
        specs = []
        for image in images:
            counters[image.kind] += 1
            specs.append(build_spec(image, source_name(image.kind, counters[image.kind]), hints, context))

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def extract_with_limit(spec) -> ExtractionResult:
            async with semaphore:
                return await self._client.extract(spec)

        results = await asyncio.gather(
            *(extract_with_limit(spec) for spec in specs),
            return_exceptions=True,
        )

        extractions: list[SourcedExtraction] = []
        failures: list[BatchFailure] = []
        total_tokens = 0
        total_cost = 0.0

        # Input order, not completion order
        for spec, result in zip(specs, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error("Failed to extract %s: %s", spec.source, result)
                failures.append(BatchFailure(source=spec.source, error=str(result)))
                continue

            total_tokens += result.metrics.total_tokens
            total_cost += result.metrics.estimated_cost

            if not result.success or result.data is None:
                logger.error("Failed to extract %s: %s", spec.source, result.error)
                failures.append(BatchFailure(source=spec.source, error=result.error or "unknown error"))
                continue

            extractions.append(
                SourcedExtraction(source=spec.source, kind=spec.kind, extraction=result.data)
            )

        equipment = EquipmentIdentification(
            tag=pick_best_field([e.extraction.get(FieldName.EQUIPMENT_TAG) for e in extractions]),
            serial=pick_best_field([e.extraction.get(FieldName.EQUIPMENT_SERIAL) for e in extractions]),
        )

        processing_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Batch extraction complete: %d/%d images, %d tokens, $%.4f in %.0fms",
            len(extractions),
            len(specs),
            total_tokens,
            total_cost,
            processing_ms,
        )

        return BatchExtractionResult(
            extractions=extractions,
            equipment=equipment,
            failures=failures,
            total_tokens=total_tokens,
            total_cost=total_cost,
            processing_ms=processing_ms,
        )
