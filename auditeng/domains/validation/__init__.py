"""
Validation Domain - Cross-source consistency checks.

This domain handles:
- Consolidating one value per evidence source
- Certificate expiry, TAG, temperature, serial and display value checks
- UTC calendar-date comparison helpers
"""

from .consistency import consolidate, normalize_serial, normalize_tag, validate
from .dates import DateFormat, is_expired, is_expiring_today, parse_date, to_utc_date
from .models import ConsolidatedEvidence, Inconsistency, Severity, TestType

__all__ = [
    # Models
    "ConsolidatedEvidence",
    "DateFormat",
    "Inconsistency",
    "Severity",
    "TestType",
    # Functions
    "consolidate",
    "normalize_serial",
    "normalize_tag",
    "validate",
    "is_expired",
    "is_expiring_today",
    "parse_date",
    "to_utc_date",
]
