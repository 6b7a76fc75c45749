"""
Extraction Contracts - Interfaces for extraction domain.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from auditeng.adapters.models import ChatCompletion

from .models import ExtractionKind, ExtractionResult, NormalizedExtraction


@runtime_checkable
class VisionModel(Protocol):
    """
    Contract for vision-capable chat models.

    Example:
        >>> class MyModel:
        ...     async def call(self, messages: list[dict], model: str) -> ChatCompletion:
        ...         ...
        >>> assert isinstance(MyModel(), VisionModel)
    """

    async def call(self, messages: list[dict[str, Any]], model: str) -> ChatCompletion:
        """
        Run one chat completion.

        Args:
            messages: OpenAI-style messages (system, then user with image parts)
            model: Model name; may differ between attempts of one extraction

        Returns:
            Chat completion in the OpenAI shape
        """
        ...


@runtime_checkable
class ExtractorSpec(Protocol):
    """
    Per-document-type extraction behaviour consumed by the resilient client.

    Example:
        >>> spec = build_spec(DocumentImage(image=url, kind=ExtractionKind.THERMAL), "thermal_image_1")
        >>> result = await client.extract(spec)
    """

    kind: ExtractionKind
    source: str

    def build_system_prompt(self) -> str:
        """System prompt, including any retrieved context."""
        ...

    def build_user_prompt(self) -> str:
        """User prompt, parameterized by expected tag/serial."""
        ...

    def parse_response(self, content: str) -> NormalizedExtraction:
        """
        Normalize the model's JSON content.

        Raises:
            InvalidResponseError: Content holds no JSON object
        """
        ...

    def images(self) -> list[str]:
        """Image references sent with the user prompt."""
        ...


@runtime_checkable
class Extractor(Protocol):
    """Contract for anything that can run an ExtractorSpec."""

    async def extract(self, spec: ExtractorSpec) -> ExtractionResult:
        """
        Run one extraction.

        Args:
            spec: Document-type extraction spec

        Returns:
            Result with data or error, never raises for model failures
        """
        ...
