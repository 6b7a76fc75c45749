"""
Resilient Extraction Client - Retry, backoff, fallback model and circuit breaker.

Wraps one vision-model call per extraction:
- Exponential backoff retries (tenacity) on transient errors
- Switch to the fallback model once the primary is rate limited
- Circuit breaker shared by every extraction through this client
- Token, cost and latency metrics on every result

Model failures never raise out of extract(); they come back as
ExtractionResult(success=False).
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from auditeng.adapters.models import ChatCompletion
from auditeng.config.errors import (
    AuditEngError,
    CircuitOpenError,
    ExtractionError,
    InvalidResponseError,
    LLMError,
    RateLimitError,
)

from .contracts import ExtractorSpec, VisionModel
from .costs import estimate_cost
from .images import prepare_image_for_api
from .models import ExtractionConfig, ExtractionMetrics, ExtractionResult, NormalizedExtraction

logger = logging.getLogger(__name__)

__all__ = [
    "CIRCUIT_OPEN_MESSAGE",
    "RETRYABLE_ERRORS",
    "CircuitState",
    "CircuitBreaker",
    "ResilientExtractionClient",
    "build_messages",
    "hash_input",
    "is_rate_limit_error",
]

CIRCUIT_OPEN_MESSAGE = "Service temporarily unavailable (circuit breaker open)"

RETRYABLE_ERRORS = (
    LLMError,
    RateLimitError,
    InvalidResponseError,
    ExtractionError,
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
)

_RATE_LIMIT_MARKERS = ("rate limit", "429", "too many requests")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED -> OPEN after ``failure_threshold`` failures in a row.
    OPEN -> HALF_OPEN once ``reset_seconds`` passed since the last failure;
    one trial call is let through. Success closes the circuit, failure
    re-opens it.

    Example:
        >>> breaker = CircuitBreaker(failure_threshold=5, reset_seconds=60)
        >>> await breaker.acquire()
        >>> await breaker.record_success()
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_seconds = reset_seconds
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    async def acquire(self) -> None:
        """
        Ask permission to call the model.

        Raises:
            CircuitOpenError: Circuit is open, or the half-open trial is taken
        """
        async with self._lock:
            if self._state is CircuitState.CLOSED:
                return

            if self._state is CircuitState.OPEN:
                elapsed = self._clock() - (self._last_failure_at or 0.0)
                if elapsed < self.reset_seconds:
                    raise CircuitOpenError(
                        CIRCUIT_OPEN_MESSAGE,
                        {"retry_in_seconds": round(self.reset_seconds - elapsed, 1)},
                    )
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker half-open after %.1fs, allowing trial call", elapsed)

            if self._trial_in_flight:
                raise CircuitOpenError(CIRCUIT_OPEN_MESSAGE, {"state": self._state.value})
            self._trial_in_flight = True

    async def record_success(self) -> None:
        async with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("Circuit breaker closed after successful trial")
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._trial_in_flight = False

    async def record_failure(self) -> None:
        async with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            self._trial_in_flight = False

            if self._state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state is not CircuitState.OPEN:
                    logger.warning("Circuit breaker opened after %d consecutive failures", self._failures)
                self._state = CircuitState.OPEN

    async def release(self) -> None:
        """Give back a half-open trial that never reached an outcome."""
        async with self._lock:
            self._trial_in_flight = False


def is_rate_limit_error(error: BaseException) -> bool:
    """
    Detect provider rate limiting.

    Example:
        >>> is_rate_limit_error(LLMError("HTTP 429 Too Many Requests"))
        True
    """
    if isinstance(error, RateLimitError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def hash_input(parts: list[str]) -> str:
    """Short stable hash of the prompt and images, for log correlation."""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
    return digest.hexdigest()[:12]


def build_messages(
    system_prompt: str,
    user_prompt: str,
    images: list[str],
    detail: str = "high",
) -> list[dict[str, Any]]:
    """Build the system + multimodal user message pair."""
    content: list[dict[str, Any]] = [{"type": "text", "text": user_prompt}]
    content.extend(
        {"type": "image_url", "image_url": {"url": image, "detail": detail}} for image in images
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": content},
    ]


class ResilientExtractionClient:
    """
    Generic driver running any ExtractorSpec against a vision model.

    Example:
        >>> client = ResilientExtractionClient(GeminiVisionClient(), ExtractionConfig())
        >>> result = await client.extract(spec)
        >>> if result.success:
        ...     print(result.data.value("equipment_tag"))
    """

    def __init__(
        self,
        model: VisionModel,
        config: ExtractionConfig | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize client.

        Args:
            model: Vision model adapter
            config: Retry, timeout and breaker settings
            breaker: Shared circuit breaker (one per client if None)
            sleep: Backoff sleep, injectable for tests
        """
        self._model = model
        self.config = config or ExtractionConfig()
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=self.config.circuit_failure_threshold,
            reset_seconds=self.config.circuit_reset_seconds,
        )
        self._sleep = sleep

    def _retrying(self, input_hash: str) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Extraction attempt %d failed [%s], retrying in %.2fs: %s",
                retry_state.attempt_number,
                input_hash,
                retry_state.next_action.sleep if retry_state.next_action else 0.0,
                error,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.config.initial_delay_ms / 1000,
                exp_base=self.config.backoff_multiplier,
                max=self.config.max_delay_ms / 1000,
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    async def extract(self, spec: ExtractorSpec) -> ExtractionResult:
        """
        Run one extraction with retries, fallback and the circuit breaker.

        Args:
            spec: Document-type extraction spec

        Returns:
            ExtractionResult; failures carry an error message instead of data
        """
        start = time.perf_counter()

        try:
            images = [prepare_image_for_api(image) for image in spec.images()]
        except AuditEngError as e:
            logger.error("Rejected input for %s: %s", spec.source, e.message)
            return ExtractionResult(success=False, error=e.message)

        system_prompt = spec.build_system_prompt()
        user_prompt = spec.build_user_prompt()
        messages = build_messages(system_prompt, user_prompt, images, self.config.vision_detail)
        input_hash = hash_input([system_prompt, user_prompt, *images])

        try:
            await self.breaker.acquire()
        except CircuitOpenError as e:
            logger.warning("Extraction rejected for %s [%s]: %s", spec.source, input_hash, e.message)
            return ExtractionResult(success=False, error=CIRCUIT_OPEN_MESSAGE)

        model = self.config.model
        attempts = 0
        completion: ChatCompletion | None = None
        data: NormalizedExtraction | None = None

        try:
            async for attempt in self._retrying(input_hash):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    logger.info(
                        "Extraction attempt %d for %s [%s] with %s",
                        attempts,
                        spec.source,
                        input_hash,
                        model,
                    )
                    try:
                        completion = await asyncio.wait_for(
                            self._model.call(messages, model),
                            timeout=self.config.timeout_seconds,
                        )
                        if not completion.content:
                            raise ExtractionError("No content in model response", {"model": model})
                        data = spec.parse_response(completion.content)
                    except Exception as e:
                        fallback = self.config.fallback_model
                        if is_rate_limit_error(e) and fallback and model != fallback:
                            logger.warning(
                                "Rate limited on %s [%s], switching to fallback model %s",
                                model,
                                input_hash,
                                fallback,
                            )
                            model = fallback
                        raise
        except asyncio.CancelledError:
            await self.breaker.release()
            raise
        except Exception as e:
            await self.breaker.record_failure()
            message = e.message if isinstance(e, AuditEngError) else str(e) or type(e).__name__
            logger.error(
                "Extraction failed for %s [%s] after %d attempts: %s",
                spec.source,
                input_hash,
                attempts,
                message,
            )
            return ExtractionResult(
                success=False,
                error=message,
                metrics=ExtractionMetrics(
                    latency_ms=(time.perf_counter() - start) * 1000,
                    retry_count=max(attempts - 1, 0),
                    model_used=model,
                    image_count=len(images),
                ),
            )

        await self.breaker.record_success()

        usage = completion.usage if completion else None
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0
        metrics = ExtractionMetrics(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            estimated_cost=estimate_cost(
                input_tokens,
                output_tokens,
                len(images),
                model,
                detail=self.config.vision_detail,
                default_model=self.config.model,
            ),
            latency_ms=(time.perf_counter() - start) * 1000,
            retry_count=attempts - 1,
            model_used=model,
            image_count=len(images),
        )
        logger.info(
            "Extraction complete for %s [%s]: %d tokens, $%.4f, %.0fms",
            spec.source,
            input_hash,
            metrics.total_tokens,
            metrics.estimated_cost,
            metrics.latency_ms,
        )
        return ExtractionResult(success=True, data=data, metrics=metrics)


