"""
Error Taxonomy - Consistent error codes across the application.

Usage:
    from auditeng.config.errors import ErrorCode, AuditEngError

    raise AuditEngError(ErrorCode.EXTRACTION_FAILED, "Model returned no content")
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for machine-readable error responses."""

    # Extraction errors
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    EXTRACTION_TIMEOUT = "EXTRACTION_TIMEOUT"
    EXTRACTION_INVALID_RESPONSE = "EXTRACTION_INVALID_RESPONSE"
    EXTRACTION_INVALID_IMAGE = "EXTRACTION_INVALID_IMAGE"

    # LLM/Model errors
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"
    LLM_RATE_LIMITED = "LLM_RATE_LIMITED"
    LLM_CIRCUIT_OPEN = "LLM_CIRCUIT_OPEN"
    LLM_AUTH_FAILED = "LLM_AUTH_FAILED"

    # Analysis lifecycle errors
    ANALYSIS_NOT_FOUND = "ANALYSIS_NOT_FOUND"
    ANALYSIS_CONFLICT = "ANALYSIS_CONFLICT"

    # Knowledge (RAG) errors
    KNOWLEDGE_INDEXING_FAILED = "KNOWLEDGE_INDEXING_FAILED"
    KNOWLEDGE_SEARCH_FAILED = "KNOWLEDGE_SEARCH_FAILED"

    # Storage errors
    STORAGE_CONNECTION_FAILED = "STORAGE_CONNECTION_FAILED"
    STORAGE_READ_FAILED = "STORAGE_READ_FAILED"
    STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class AuditEngError(Exception):
    """Base exception with error code support."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


# Domain-specific exceptions for cleaner imports
class ExtractionError(AuditEngError):
    """Extraction domain errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.EXTRACTION_FAILED, message, details)


class InvalidResponseError(AuditEngError):
    """Model output that contains no usable JSON payload."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.EXTRACTION_INVALID_RESPONSE, message, details)


class LLMError(AuditEngError):
    """LLM/model errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.LLM_UNAVAILABLE, message, details)


class RateLimitError(AuditEngError):
    """Provider rejected the call with a rate limit (HTTP 429 or quota)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.LLM_RATE_LIMITED, message, details)


class CircuitOpenError(AuditEngError):
    """Circuit breaker is open; the model is treated as unavailable."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.LLM_CIRCUIT_OPEN, message, details)


class ConflictError(AuditEngError):
    """Requested state transition is not valid for the record's status."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.ANALYSIS_CONFLICT, message, details)


class NotFoundError(AuditEngError):
    """Record does not exist or is not visible to the tenant."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.ANALYSIS_NOT_FOUND, message, details)


class KnowledgeError(AuditEngError):
    """Knowledge index errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.KNOWLEDGE_INDEXING_FAILED, message, details)


class StorageError(AuditEngError):
    """Storage/database errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.STORAGE_WRITE_FAILED, message, details)
