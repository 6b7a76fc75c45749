"""
Prompt Enhancer - RAG context turned into extractor prompt additions.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter

from auditeng.domains.extraction.models import PromptContext
from auditeng.domains.rules.models import Verdict
from auditeng.domains.validation.models import TestType

from .models import RAGContext
from .rag import RAGService, format_corrections, format_similar_analyses, format_standards

logger = logging.getLogger(__name__)

__all__ = ["RAGPromptEnhancer", "build_user_hints"]

QUERY_TEXT_CHARS = 500
PROMPT_CONTEXT_TOKENS = 3000  # Leaves room for the main prompt
MAX_COMMON_ISSUES = 3


def build_user_hints(context: RAGContext) -> str:
    """
    Hints for the user prompt derived from similar past cases.

    Returns:
        Markdown hint block, or "" when there is nothing to say
    """
    hints: list[str] = []

    if any(a.verdict is Verdict.REJECTED for a in context.similar_analyses):
        hints.append(
            "Note: Similar reports in the past have been REJECTED. Pay extra attention to validation criteria."
        )

    codes = Counter(
        code
        for analysis in context.similar_analyses
        for code in analysis.metadata.get("non_conformity_codes", [])
    )
    if codes:
        common = [code for code, _ in codes.most_common(MAX_COMMON_ISSUES)]
        hints.append(f"Common issues found in similar analyses: {', '.join(common)}")

    if context.corrections:
        hints.append(
            "Important: Review the corrections above - similar reports have had validation issues before."
        )

    if not hints:
        return ""
    return "\n\n**Analysis Hints (from past experience):**\n" + "\n".join(f"- {h}" for h in hints)


class RAGPromptEnhancer:
    """
    Build prompt context for a new analysis from past knowledge.

    Example:
        >>> enhancer = RAGPromptEnhancer(rag)
        >>> context = await enhancer.enhance(TestType.THERMOGRAPHY, "TAG PDU-A-01 ...", "acme")
        >>> spec = build_spec(image, "thermal_image_1", context=context)
    """

    def __init__(self, rag: RAGService, max_tokens: int = PROMPT_CONTEXT_TOKENS) -> None:
        self._rag = rag
        self._max_tokens = max_tokens
        self._pending: set[asyncio.Task[None]] = set()

    async def enhance(
        self,
        test_type: TestType,
        extracted_text: str,
        company_id: str | None = None,
        include_examples: bool = True,
        include_corrections: bool = True,
        include_standards: bool = True,
    ) -> PromptContext:
        """
        Retrieve context and render it as prompt additions.

        Args:
            test_type: Test type of the current report
            extracted_text: Report text already known (first 500 chars are used)
            company_id: Tenant requesting the analysis
            include_examples: Add similar analyses as few-shot examples
            include_corrections: Add past corrections
            include_standards: Add technical standards

        Returns:
            System addition, user hints and the ids of entries used
        """
        query = f"{test_type.value} analysis: {extracted_text[:QUERY_TEXT_CHARS]}"
        context = await self._rag.build_context(query, test_type, company_id, max_tokens=self._max_tokens)

        sections: list[str] = []
        embedding_ids: list[str] = []
        if include_examples and context.similar_analyses:
            sections.append(format_similar_analyses(context.similar_analyses))
            embedding_ids.extend(a.id for a in context.similar_analyses)
        if include_corrections and context.corrections:
            sections.append(format_corrections(context.corrections))
            embedding_ids.extend(c.id for c in context.corrections)
        if include_standards and context.standards:
            sections.append(format_standards(context.standards))
            embedding_ids.extend(s.id for s in context.standards)

        if embedding_ids:
            self._track_in_background(embedding_ids)

        return PromptContext(
            system_addition="\n\n".join(sections),
            user_hints=build_user_hints(context),
            embedding_ids=embedding_ids,
        )

    def _track_in_background(self, embedding_ids: list[str]) -> None:
        task = asyncio.create_task(self._rag.track_usage(embedding_ids))
        self._pending.add(task)
        task.add_done_callback(self._on_tracked)

    def _on_tracked(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Usage tracking failed: %s", task.exception())

    async def flush(self) -> None:
        """Wait for background usage tracking to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
