"""
OpenAI Adapter - OpenAI-compatible chat completions client.
"""

from .client import OpenAIVisionClient

__all__ = ["OpenAIVisionClient"]
