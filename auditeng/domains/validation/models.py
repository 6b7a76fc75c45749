"""
Validation Models - Data types for cross-source consistency checks.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel

from .dates import DateFormat


class Severity(str, Enum):
    """Severity of a finding."""

    CRITICAL = "CRITICAL"  # Blocks approval
    MAJOR = "MAJOR"  # Approval with comments
    MINOR = "MINOR"  # Informational, approval with comments


SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.MAJOR: 1, Severity.MINOR: 2}


class TestType(str, Enum):
    """Kind of electrical test documented by a report."""

    __test__ = False  # not a pytest class

    GROUNDING = "GROUNDING"  # Ground resistance (earth electrode)
    MEGGER = "MEGGER"  # Insulation resistance
    THERMOGRAPHY = "THERMOGRAPHY"  # Infrared inspection


class Inconsistency(BaseModel):
    """The same fact disagreeing across independent evidence sources."""

    severity: Severity
    code: str
    field: str
    expected: str
    found: str
    message: str

    model_config = {"frozen": True}


class ConsolidatedEvidence(BaseModel):
    """
    One value per evidence source for every fact the validator compares.

    A None slot means the source did not report the fact.
    """

    test_type: TestType

    # Calibration
    measurement_date: Any = None
    certificate_expiry: Any = None
    date_format: DateFormat = DateFormat.DMY

    # Equipment TAG by source
    report_tag: str | None = None
    photo_tag: str | None = None
    table_tag: str | None = None

    # Instrument serial by source
    certificate_serial: str | None = None
    report_serial: str | None = None
    photo_serial: str | None = None
    instrument_serial: str | None = None

    # Thermal camera parameters
    ambient_temperature: float | None = None
    reflected_temperature: float | None = None

    # Instrument display vs report table
    display_value: float | None = None
    table_value: float | None = None

    def tag_candidates(self) -> list[tuple[str, str]]:
        """(source, raw tag) for every source that reported a tag."""
        return _present(report=self.report_tag, photo=self.photo_tag, table=self.table_tag)

    def serial_candidates(self) -> list[tuple[str, str]]:
        """(source, raw serial) for every source that reported a serial."""
        return _present(
            certificate=self.certificate_serial,
            report=self.report_serial,
            photo=self.photo_serial,
            instrument=self.instrument_serial,
        )


def _present(**values: str | None) -> list[tuple[str, str]]:
    return [(source, str(value)) for source, value in values.items() if value is not None and str(value).strip()]
