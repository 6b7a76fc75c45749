"""
Gemini Models - Configuration for the Gemini vision adapter.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GeminiConfig(BaseModel):
    """Configuration for Gemini vision client."""

    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=4000)
    timeout_seconds: int = Field(default=60)
    rate_limit_rpm: int = Field(default=60)
    response_mime_type: str = Field(default="application/json")

    model_config = {"frozen": True}
