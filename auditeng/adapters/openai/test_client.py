"""
Tests for the OpenAI-compatible vision client.
"""

from __future__ import annotations

import json

import httpx
import pytest

from auditeng.config.errors import LLMError, RateLimitError

from .client import OpenAIVisionClient

MESSAGES = [
    {"role": "system", "content": "Extract fields."},
    {"role": "user", "content": [{"type": "text", "text": "Go"}]},
]


def _client(handler) -> OpenAIVisionClient:
    return OpenAIVisionClient(
        api_key="sk-test",
        base_url="https://llm.example.com/v1/",
        transport=httpx.MockTransport(handler),
    )


async def test_call_parses_completion() -> None:
    """Test a 200 response is parsed into a ChatCompletion."""
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-1",
                "model": "gpt-4o",
                "choices": [{"index": 0, "message": {"role": "assistant", "content": "{}"}}],
                "usage": {"prompt_tokens": 900, "completion_tokens": 50, "total_tokens": 950},
            },
        )

    client = _client(handler)
    completion = await client.call(MESSAGES, model="gpt-4o")
    await client.close()

    assert seen["url"] == "https://llm.example.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-4o"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert completion.content == "{}"
    assert completion.usage.prompt_tokens == 900
    assert completion.usage.completion_tokens == 50


async def test_call_uses_requested_model() -> None:
    """Test the fallback model string is sent as-is."""
    models: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        models.append(json.loads(request.content)["model"])
        return httpx.Response(200, json={"choices": [], "usage": {}})

    client = _client(handler)
    await client.call(MESSAGES, model="gpt-4o-mini")
    await client.close()

    assert models == ["gpt-4o-mini"]


async def test_call_raises_rate_limit_on_429() -> None:
    """Test HTTP 429 maps to RateLimitError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Too many requests"}})

    client = _client(handler)
    with pytest.raises(RateLimitError):
        await client.call(MESSAGES, model="gpt-4o")
    await client.close()


async def test_call_raises_llm_error_on_server_error() -> None:
    """Test non-2xx responses map to LLMError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream unavailable")

    client = _client(handler)
    with pytest.raises(LLMError) as exc_info:
        await client.call(MESSAGES, model="gpt-4o")
    await client.close()

    assert exc_info.value.details["status"] == 503


async def test_call_wraps_transport_errors() -> None:
    """Test connection failures map to LLMError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(LLMError):
        await client.call(MESSAGES, model="gpt-4o")
    await client.close()


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>gateway hiccup</html>"),
        httpx.Response(200, json={"choices": "not-a-list"}),
    ],
    ids=["non-json", "off-shape"],
)
async def test_call_wraps_unreadable_body(response: httpx.Response) -> None:
    """Test a 200 response that is not a completion maps to LLMError."""
    client = _client(lambda request: response)
    with pytest.raises(LLMError, match="unreadable") as exc_info:
        await client.call(MESSAGES, model="gpt-4o")
    await client.close()

    assert exc_info.value.details["model"] == "gpt-4o"
