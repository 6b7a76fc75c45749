"""
CLI Interface - Command-line tools for AuditEng.

Provides commands for:
- Report analysis from a JSON manifest
- Knowledge search
- Seeding the technical criteria
- System management
"""

from .main import app, main

__all__ = ["app", "main"]
