"""
Adapter Models - Provider-neutral chat completion types.

Every vision adapter returns the OpenAI chat-completions shape so the
extraction client never branches on provider.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

__all__ = ["ChatMessage", "ChatChoice", "ChatUsage", "ChatCompletion"]


class ChatMessage(BaseModel):
    """Assistant message returned by the model."""

    role: str = "assistant"
    content: str | None = None


class ChatChoice(BaseModel):
    """One completion choice."""

    index: int = 0
    message: ChatMessage = Field(default_factory=ChatMessage)
    finish_reason: str | None = None


class ChatUsage(BaseModel):
    """Token usage reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ChatCompletion(BaseModel):
    """Chat completion response (OpenAI shape)."""

    model: str = ""
    choices: list[ChatChoice] = Field(default_factory=list)
    usage: ChatUsage = Field(default_factory=ChatUsage)

    model_config = {"extra": "ignore"}

    @property
    def content(self) -> str | None:
        """Content of the first choice, if any."""
        if not self.choices:
            return None
        return self.choices[0].message.content
