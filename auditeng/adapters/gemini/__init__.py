"""
Gemini Adapter - Vision calls through Google Gemini.

Exposes the chat-completions call shape used by the extraction domain.
"""

from .client import GeminiVisionClient
from .models import GeminiConfig

__all__ = [
    "GeminiVisionClient",
    "GeminiConfig",
]
