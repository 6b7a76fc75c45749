"""
Sentence Transformer Embedder - Local text embeddings for the knowledge index.
"""

from __future__ import annotations

import asyncio
import logging

import numpy as np
from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

__all__ = ["SentenceTransformerEmbedder", "truncate_for_embedding"]


def truncate_for_embedding(text: str, max_tokens: int) -> str:
    """
    Truncate text to the embedding model's budget (~4 chars per token).

    Example:
        >>> truncate_for_embedding("abcdefghij", max_tokens=2)
        'abcdefgh...'
    """
    max_chars = max_tokens * 4
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


class SentenceTransformerEmbedder:
    """
    Embedding function backed by sentence-transformers.

    Vectors are L2-normalized so inner product equals cosine similarity.

    Example:
        >>> embedder = SentenceTransformerEmbedder("all-MiniLM-L6-v2")
        >>> vector = await embedder.embed("THERMOGRAPHY analysis: PDU-A-01")
    """

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        max_tokens: int = 8000,
    ) -> None:
        """
        Initialize embedder (model loads lazily).

        Args:
            model_name: Sentence-transformers model name
            max_tokens: Input budget before truncation
        """
        self.model_name = model_name
        self.max_tokens = max_tokens
        self._model: SentenceTransformer | None = None

    def _get_model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info("Loading embedding model: %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    @property
    def dimension(self) -> int:
        """Embedding dimension of the loaded model."""
        return int(self._get_model().get_sentence_embedding_dimension())

    async def embed(self, text: str) -> np.ndarray:
        """
        Embed one text.

        Args:
            text: Text to embed (truncated to the token budget)

        Returns:
            1-D float32 vector
        """
        model = self._get_model()
        vector = await asyncio.to_thread(
            model.encode,
            truncate_for_embedding(text, self.max_tokens),
            normalize_embeddings=True,
        )
        return np.asarray(vector, dtype="float32")
