"""
Criteria Corpus - Acceptance criteria and standards seeded into the knowledge index.

The corpus mirrors the checks of the rules engine so that retrieved
context and deterministic verdicts agree.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, Field

from auditeng.domains.validation.models import TestType

from .models import ContentType
from .rag import RAGService

logger = logging.getLogger(__name__)

__all__ = [
    "ALL_CRITERIA",
    "CriteriaCategory",
    "CriteriaDocument",
    "CriteriaIndexer",
    "CriterionType",
    "IndexingProgress",
    "IndexingSummary",
    "build_criterion_content",
    "criteria_by_category",
    "criteria_by_test_type",
]


class CriteriaCategory(str, Enum):
    UNIVERSAL = "UNIVERSAL"
    GROUNDING = "GROUNDING"
    MEGGER = "MEGGER"
    THERMOGRAPHY = "THERMOGRAPHY"


class CriterionType(str, Enum):
    STANDARD = "STANDARD"
    CRITERIA = "CRITERIA"
    LIMIT = "LIMIT"
    FORMULA = "FORMULA"
    VALIDATION_RULE = "VALIDATION_RULE"


class CriteriaDocument(BaseModel):
    """One criterion, standard excerpt or validation rule."""

    id: str
    type: CriterionType
    category: CriteriaCategory
    title: str
    content: str
    standards: list[str] = Field(default_factory=list)
    severity: str | None = None
    limit: str | None = None
    formula: str | None = None
    test_types: list[TestType] = Field(default_factory=list)
    priority: int = 99

    model_config = {"frozen": True}

    @property
    def content_type(self) -> ContentType:
        if self.type in (CriterionType.CRITERIA, CriterionType.VALIDATION_RULE):
            return ContentType.BEST_PRACTICE
        return ContentType.TECHNICAL_STANDARD

    @property
    def applicable_test_types(self) -> list[TestType]:
        """Explicit test types, else derived from the category."""
        if self.test_types:
            return list(self.test_types)
        if self.category is CriteriaCategory.UNIVERSAL:
            return list(TestType)
        return [TestType(self.category.value)]


_ALL_TYPES = list(TestType)

UNIVERSAL_CRITERIA = [
    CriteriaDocument(
        id="UNIV-001",
        type=CriterionType.VALIDATION_RULE,
        category=CriteriaCategory.UNIVERSAL,
        title="Calibration Certificate Validity",
        content="""Validation Rule: Calibration Certificate Date Check

The measurement date MUST be on or before the calibration certificate expiry date.
Dates are compared as calendar days; time of day is ignored.

Validation Logic:
- Expiry before the measurement date: CRITICAL, report REJECTED
- Expiry on the measurement date: MINOR, schedule recalibration

Common Issues:
- Expired certificates used unknowingly
- Date format confusion (MM/DD vs DD/MM)
- Several certificates with different expiry dates""",
        severity="CRITICAL",
        test_types=_ALL_TYPES,
        priority=1,
    ),
    CriteriaDocument(
        id="UNIV-002",
        type=CriterionType.VALIDATION_RULE,
        category=CriteriaCategory.UNIVERSAL,
        title="Serial Number Cross-Validation",
        content="""Validation Rule: Instrument Serial Number Consistency

The instrument serial visible in photos MUST match the serial on the calibration
certificate and in the report. Spaces, dashes, dots and case are ignored.

Validation Logic:
- Any mismatch: CRITICAL, report REJECTED

Why This Matters:
- Proves the calibrated instrument was the one actually used
- Prevents reuse of certificates from other instruments""",
        severity="CRITICAL",
        test_types=_ALL_TYPES,
        priority=1,
    ),
    CriteriaDocument(
        id="UNIV-003",
        type=CriterionType.VALIDATION_RULE,
        category=CriteriaCategory.UNIVERSAL,
        title="TAG Consistency Validation",
        content="""Validation Rule: Equipment TAG Consistency

The equipment TAG must be identical in the report header, the equipment photo
and the data table. Case and separator differences ("EQ-01" vs "eq 01") are ignored.

Validation Logic:
- Any difference after normalization: CRITICAL, report REJECTED

Common Formats:
- Alphanumeric: "EQ-001", "CB-A12", "QGBT-01"
- Location-based: SS1-QGBT-001""",
        severity="CRITICAL",
        test_types=_ALL_TYPES,
        priority=1,
    ),
    CriteriaDocument(
        id="UNIV-004",
        type=CriterionType.CRITERIA,
        category=CriteriaCategory.UNIVERSAL,
        title="Photo Requirements",
        content="""Criteria: Mandatory Photo Documentation

Photos must be present, legible, timestamped and show the equipment measured.
The instrument display value in the photo must match the report table within 5%.

Validation Logic:
- Display value differs from table by more than 5%: MINOR""",
        severity="MEDIUM",
        test_types=_ALL_TYPES,
        priority=2,
    ),
]

GROUNDING_CRITERIA = [
    CriteriaDocument(
        id="GND-001",
        type=CriterionType.STANDARD,
        category=CriteriaCategory.GROUNDING,
        title="NBR 5419 - Lightning Protection Systems (SPDA)",
        content="""Grounding of lightning protection systems.

- Grounding electrodes must form a continuous ring or equivalent arrangement
- Measurements use the fall-of-potential method with auxiliary rods
- Results, method and instrument must be recorded in the report""",
        standards=["NBR 5419"],
        priority=2,
    ),
    CriteriaDocument(
        id="GND-002",
        type=CriterionType.LIMIT,
        category=CriteriaCategory.GROUNDING,
        title="Ground Resistance Limit",
        content="""Ground Resistance Acceptance Limit

- Maximum: 5 ohms
- Resistance above the limit is CRITICAL and the report is REJECTED

Corrective Actions:
- Add or extend grounding rods
- Treat soil to lower resistivity
- Re-measure after the intervention""",
        standards=["NBR 5410", "NBR 5419"],
        limit="5 ohms",
        severity="CRITICAL",
        priority=1,
    ),
    CriteriaDocument(
        id="GND-003",
        type=CriterionType.CRITERIA,
        category=CriteriaCategory.GROUNDING,
        title="Grounding Report Evidence",
        content="""Criteria: Grounding Report Evidence

- Measurement photos must carry a date/location watermark (MAJOR if missing)
- The report must be signed by the responsible technician (MAJOR if missing)""",
        severity="HIGH",
        priority=1,
    ),
]

THERMOGRAPHY_CRITERIA = [
    CriteriaDocument(
        id="THERM-001",
        type=CriterionType.STANDARD,
        category=CriteriaCategory.THERMOGRAPHY,
        title="NBR 15572 - Thermographic Inspection of Electrical Equipment",
        content="""Thermographic inspection of electrical installations.

- Inspect under load, ideally above 40% of rated current
- Record emissivity, distance, ambient and reflected temperature
- Attach a visible photo for each thermogram""",
        standards=["NBR 15572"],
        priority=2,
    ),
    CriteriaDocument(
        id="THERM-002",
        type=CriterionType.LIMIT,
        category=CriteriaCategory.THERMOGRAPHY,
        title="Phase-to-Phase Temperature Difference",
        content="""Delta T Classification

| Delta T      | Classification | Severity |
|--------------|----------------|----------|
| <= 3 C       | Normal         | none     |
| 3 - 15 C     | Attention      | MINOR    |
| > 15 C       | Critical       | CRITICAL |

When delta T is not reported it is taken as the spread of the spot readings.""",
        standards=["NETA MTS"],
        limit="Delta T <= 15 C",
        severity="CRITICAL",
        priority=1,
    ),
    CriteriaDocument(
        id="THERM-003",
        type=CriterionType.VALIDATION_RULE,
        category=CriteriaCategory.THERMOGRAPHY,
        title="Ambient vs Reflected Temperature Validation",
        content="""Validation Rule: Temperature Parameter Consistency

|ambient - reflected| must not exceed 1 C.

Common Causes of Discrepancy:
- Nearby hot or cold surfaces
- Sunlight or artificial light sources
- Incorrect parameter entry in the camera""",
        severity="CRITICAL",
        limit="1 C difference",
        priority=1,
    ),
    CriteriaDocument(
        id="THERM-004",
        type=CriterionType.CRITERIA,
        category=CriteriaCategory.THERMOGRAPHY,
        title="Load Condition Requirements",
        content="""Criteria: Load and Parameter Documentation

- Load current and rated current are mandatory (MAJOR if missing)
- Reflected temperature must be documented (MINOR if missing)""",
        severity="MEDIUM",
        priority=2,
    ),
]

MEGGER_CRITERIA = [
    CriteriaDocument(
        id="MEG-001",
        type=CriterionType.STANDARD,
        category=CriteriaCategory.MEGGER,
        title="IEEE 43 - Insulation Resistance Testing",
        content="""Insulation resistance testing.

- Test all six phase combinations: A-B, A-C, B-C, A-G, B-G, C-G
- A missing combination is CRITICAL
- Record test voltage, duration and temperature""",
        standards=["IEEE 43"],
        severity="CRITICAL",
        priority=1,
    ),
    CriteriaDocument(
        id="MEG-002",
        type=CriterionType.LIMIT,
        category=CriteriaCategory.MEGGER,
        title="Minimum Insulation Resistance",
        content="""Insulation Resistance Acceptance Limit

- Minimum: 100 Mohm on every phase combination
- Any reading below the minimum is CRITICAL

Low readings usually indicate moisture, contamination or damaged insulation.""",
        standards=["IEEE 43", "NETA MTS"],
        limit="100 Mohm",
        severity="CRITICAL",
        priority=1,
    ),
    CriteriaDocument(
        id="MEG-003",
        type=CriterionType.FORMULA,
        category=CriteriaCategory.MEGGER,
        title="Dielectric Absorption Ratio (DAR)",
        content="""Formula: DAR = R_60s / R_30s

| DAR          | Condition    |
|--------------|--------------|
| < 1.0        | Poor         |
| 1.0 - 1.4    | Questionable |
| >= 1.4       | Acceptable   |

An absorption index below 1.4 is MAJOR.""",
        standards=["IEEE 43", "NETA MTS"],
        formula="DAR = R_60s / R_30s",
        limit="DAR >= 1.4",
        severity="HIGH",
        priority=1,
    ),
]

ALL_CRITERIA: list[CriteriaDocument] = [
    *UNIVERSAL_CRITERIA,
    *GROUNDING_CRITERIA,
    *THERMOGRAPHY_CRITERIA,
    *MEGGER_CRITERIA,
]


def criteria_by_category(category: CriteriaCategory) -> list[CriteriaDocument]:
    return [doc for doc in ALL_CRITERIA if doc.category is category]


def criteria_by_test_type(test_type: TestType) -> list[CriteriaDocument]:
    """Criteria for one test type, universal criteria included."""
    return [doc for doc in ALL_CRITERIA if test_type in doc.applicable_test_types]


def build_criterion_content(doc: CriteriaDocument) -> str:
    """Text embedded for one criterion."""
    parts = [f"[{doc.type.value}] {doc.title}", "", f"Category: {doc.category.value}"]
    parts.append(f"Applies to: {', '.join(t.value for t in doc.applicable_test_types)}")
    if doc.standards:
        parts.append(f"Standards: {', '.join(doc.standards)}")
    if doc.severity:
        parts.append(f"Severity: {doc.severity}")
    if doc.limit:
        parts.append(f"Limit: {doc.limit}")
    if doc.formula:
        parts.append(f"Formula: {doc.formula}")
    parts.extend(["", doc.content])
    return "\n".join(parts)


class IndexingProgress(BaseModel):
    total: int
    current: int
    criterion_id: str
    title: str


class IndexingSummary(BaseModel):
    """Outcome of a criteria indexing run."""

    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.failed == 0


ProgressCallback = Callable[[IndexingProgress], None]


class CriteriaIndexer:
    """
    Seed the knowledge index with the criteria corpus.

    Criteria already present (by criterion id) are skipped, so seeding
    is idempotent.

    Example:
        >>> indexer = CriteriaIndexer(rag)
        >>> summary = await indexer.index_all()
        >>> summary.indexed
        14
    """

    def __init__(self, rag: RAGService) -> None:
        self._rag = rag

    async def index_all(self, progress: ProgressCallback | None = None) -> IndexingSummary:
        return await self._index(ALL_CRITERIA, progress)

    async def index_by_category(
        self,
        category: CriteriaCategory,
        progress: ProgressCallback | None = None,
    ) -> IndexingSummary:
        return await self._index(criteria_by_category(category), progress)

    async def index_by_test_type(
        self,
        test_type: TestType,
        progress: ProgressCallback | None = None,
    ) -> IndexingSummary:
        return await self._index(criteria_by_test_type(test_type), progress)

    async def _index(
        self,
        documents: list[CriteriaDocument],
        progress: ProgressCallback | None,
    ) -> IndexingSummary:
        start = time.perf_counter()
        summary = IndexingSummary()

        for i, doc in enumerate(documents, 1):
            if progress:
                progress(IndexingProgress(total=len(documents), current=i, criterion_id=doc.id, title=doc.title))

            if self._rag.find_global("criterion_id", doc.id):
                summary.skipped += 1
                continue

            result = await self._rag.index_global(
                build_criterion_content(doc),
                doc.content_type,
                doc.applicable_test_types,
                {
                    "criterion_id": doc.id,
                    "criterion_type": doc.type.value,
                    "category": doc.category.value,
                    "title": doc.title,
                    "standards": doc.standards,
                    "severity": doc.severity,
                    "priority": doc.priority,
                },
            )
            if result.success:
                summary.indexed += 1
            else:
                summary.failed += 1
                summary.errors.append(f"{doc.id}: {result.error}")

        summary.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Criteria indexing complete: %d indexed, %d skipped, %d failed",
            summary.indexed,
            summary.skipped,
            summary.failed,
        )
        return summary
