"""
Gemini Vision Client - Chat-style vision calls through Google Gemini.

Translates OpenAI-style chat messages (system text, user text and
image_url parts) into Gemini content parts and maps the response back to
a ChatCompletion, so the extraction client can treat every provider the
same way.

Authentication:
- Uses Application Default Credentials or GOOGLE_API_KEY as configured
  for google-generativeai; no key handling happens here.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any

import google.generativeai as genai
import httpx

from auditeng.adapters.models import ChatChoice, ChatCompletion, ChatMessage, ChatUsage
from auditeng.config.errors import LLMError, RateLimitError

from .models import GeminiConfig

logger = logging.getLogger(__name__)

__all__ = ["GeminiVisionClient"]

_RATE_LIMIT_MARKERS = ("429", "rate limit", "quota", "resource exhausted", "resource_exhausted")


class GeminiVisionClient:
    """
    Vision model adapter backed by google-generativeai.

    Example:
        >>> client = GeminiVisionClient()
        >>> completion = await client.call(messages, model="gemini-2.0-flash")
        >>> print(completion.content)
    """

    def __init__(self, config: GeminiConfig | None = None) -> None:
        """
        Initialize Gemini vision client.

        Args:
            config: Client configuration. Uses defaults if None.
        """
        self.config = config or GeminiConfig()

        # Rate limiting state
        self._request_times: list[float] = []
        self._rate_lock = asyncio.Lock()

        logger.info(
            "GeminiVisionClient initialized: rpm=%d, timeout=%ds",
            self.config.rate_limit_rpm,
            self.config.timeout_seconds,
        )

    async def _check_rate_limit(self) -> None:
        """Enforce requests-per-minute budget."""
        async with self._rate_lock:
            now = time.time()
            self._request_times = [t for t in self._request_times if now - t < 60]

            if len(self._request_times) >= self.config.rate_limit_rpm:
                wait_time = 60 - (now - self._request_times[0])
                if wait_time > 0:
                    logger.warning("Rate limit reached, waiting %.1fs", wait_time)
                    await asyncio.sleep(wait_time)

            self._request_times.append(now)

    def _build_model(self, model: str, system_instruction: str | None) -> genai.GenerativeModel:
        generation_config: dict[str, Any] = {
            "temperature": self.config.temperature,
            "max_output_tokens": self.config.max_output_tokens,
            "response_mime_type": self.config.response_mime_type,
        }
        return genai.GenerativeModel(
            model_name=model,
            generation_config=generation_config,
            system_instruction=system_instruction,
        )

    async def call(self, messages: list[dict[str, Any]], model: str) -> ChatCompletion:
        """
        Run one chat-style vision call.

        Args:
            messages: OpenAI-style messages (system/user, text and image_url parts)
            model: Gemini model name

        Returns:
            ChatCompletion with the model text and token usage

        Raises:
            RateLimitError: Quota or rate limit exceeded
            LLMError: Any other provider failure
        """
        await self._check_rate_limit()

        system_parts: list[str] = []
        user_parts: list[Any] = []
        for message in messages:
            if message.get("role") == "system":
                system_parts.append(str(message.get("content", "")))
            else:
                user_parts.extend(await self._convert_content(message.get("content")))

        try:
            gemini_model = self._build_model(model, "\n\n".join(system_parts) or None)
            response = await asyncio.to_thread(
                gemini_model.generate_content,
                [{"role": "user", "parts": user_parts}],
                request_options={"timeout": self.config.timeout_seconds},
            )
        except Exception as e:
            error_msg = str(e).lower()
            if any(marker in error_msg for marker in _RATE_LIMIT_MARKERS):
                raise RateLimitError(f"Gemini rate limit exceeded: {e}", {"model": model}) from e
            raise LLMError(f"Gemini API error: {e}", {"model": model}) from e

        try:
            text = response.text
        except (AttributeError, ValueError) as e:
            # Blocked or empty candidates have no text accessor value
            raise LLMError(f"Gemini returned no text: {e}", {"model": model}) from e

        usage = getattr(response, "usage_metadata", None)
        prompt_tokens = getattr(usage, "prompt_token_count", 0) if usage else 0
        completion_tokens = getattr(usage, "candidates_token_count", 0) if usage else 0

        return ChatCompletion(
            model=model,
            choices=[ChatChoice(message=ChatMessage(content=text), finish_reason="stop")],
            usage=ChatUsage(
                prompt_tokens=prompt_tokens or 0,
                completion_tokens=completion_tokens or 0,
            ),
        )

    async def _convert_content(self, content: Any) -> list[Any]:
        """Convert OpenAI message content into Gemini parts."""
        if content is None:
            return []
        if isinstance(content, str):
            return [content]

        parts: list[Any] = []
        for item in content:
            if item.get("type") == "text":
                parts.append(item.get("text", ""))
            elif item.get("type") == "image_url":
                url = item.get("image_url", {}).get("url", "")
                parts.append(await self._image_part(url))
        return parts

    async def _image_part(self, url: str) -> dict[str, Any]:
        """
        Build an inline image part from a data URI or remote URL.

        Raises:
            LLMError: Image could not be fetched or decoded
        """
        if url.startswith(("http://", "https://")):
            try:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, timeout=self.config.timeout_seconds)
                    response.raise_for_status()
            except httpx.HTTPError as e:
                raise LLMError(f"Image fetch failed: {e}", {"url": url}) from e
            mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
            return {"mime_type": mime_type, "data": response.content}

        mime_type = "image/jpeg"
        payload = url
        if url.startswith("data:"):
            header, _, payload = url.partition(",")
            mime_type = header[len("data:"):].split(";")[0] or mime_type

        try:
            # binascii.Error is a ValueError
            data = base64.b64decode(payload, validate=True)
        except ValueError as e:
            raise LLMError(f"Image is not valid base64: {e}", {"mime_type": mime_type}) from e
        return {"mime_type": mime_type, "data": data}
