"""SQLite adapter - Analysis and feedback persistence."""

from .repository import SQLiteAnalysisRepository

__all__ = ["SQLiteAnalysisRepository"]
