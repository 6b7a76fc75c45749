"""
Configuration - Application settings, error taxonomy, and logging setup.
"""

from .errors import (
    AuditEngError,
    CircuitOpenError,
    ConflictError,
    ErrorCode,
    ExtractionError,
    InvalidResponseError,
    KnowledgeError,
    LLMError,
    NotFoundError,
    RateLimitError,
    StorageError,
)
from .logging import setup_logging
from .settings import Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "setup_logging",
    # Errors
    "ErrorCode",
    "AuditEngError",
    "ExtractionError",
    "InvalidResponseError",
    "LLMError",
    "RateLimitError",
    "CircuitOpenError",
    "ConflictError",
    "NotFoundError",
    "KnowledgeError",
    "StorageError",
]
