"""
OpenAI Vision Client - OpenAI-compatible chat completions over httpx.

Works against api.openai.com or any server exposing the same
/chat/completions endpoint (Azure proxies, vLLM, LiteLLM).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from auditeng.adapters.models import ChatCompletion
from auditeng.config.errors import LLMError, RateLimitError

logger = logging.getLogger(__name__)

__all__ = ["OpenAIVisionClient"]


class OpenAIVisionClient:
    """
    Vision model adapter for OpenAI-compatible chat completions.

    Example:
        >>> client = OpenAIVisionClient(api_key="sk-...")
        >>> completion = await client.call(messages, model="gpt-4o")
        >>> await client.close()
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        max_tokens: int = 4000,
        temperature: float = 0.0,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            api_key: Bearer token for the endpoint
            base_url: API base URL (without /chat/completions)
            max_tokens: Completion token cap
            temperature: Sampling temperature
            timeout_seconds: Request timeout
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    async def call(self, messages: list[dict[str, Any]], model: str) -> ChatCompletion:
        """
        Run one chat completion.

        Args:
            messages: Chat messages (text and image_url parts)
            model: Model name, primary or fallback

        Returns:
            Parsed ChatCompletion

        Raises:
            RateLimitError: HTTP 429
            LLMError: Transport failure, non-2xx status or unreadable body
        """
        body = {
            "model": model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }

        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.HTTPError as e:
            raise LLMError(f"OpenAI request failed: {e}", {"model": model}) from e

        if response.status_code == 429:
            raise RateLimitError(
                "OpenAI rate limit exceeded (429)",
                {"model": model, "retry_after": response.headers.get("retry-after")},
            )

        if response.status_code != 200:
            logger.error("OpenAI error: %s %s", response.status_code, response.text)
            raise LLMError(
                f"OpenAI API error: {response.status_code}",
                {"model": model, "status": response.status_code},
            )

        try:
            return ChatCompletion.model_validate(response.json())
        except ValueError as e:
            # Non-JSON body (JSONDecodeError) or off-shape payload (ValidationError)
            logger.error("OpenAI returned an unreadable completion: %s", response.text[:200])
            raise LLMError(f"OpenAI response unreadable: {e}", {"model": model}) from e

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
