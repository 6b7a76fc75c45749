"""
Knowledge Contracts - Interfaces for knowledge domain.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class Embedder(Protocol):
    """Contract for text embedding functions."""

    async def embed(self, text: str) -> np.ndarray:
        """Embed one text into a 1-D vector."""
        ...


@runtime_checkable
class VectorStore(Protocol):
    """Contract for append-only vector storage with metadata."""

    async def insert(self, embedding: np.ndarray, metadata: dict[str, Any]) -> str:
        """Append a vector; returns the entry id."""
        ...

    async def nearest(
        self,
        query_embedding: np.ndarray,
        k: int = 10,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> list[dict[str, Any]]:
        """Ranked rows with 'score' and 'metadata', best first."""
        ...

    async def update(self, entry_id: str, changes: dict[str, Any]) -> bool:
        """Update metadata of one entry."""
        ...

    def get(self, entry_id: str) -> dict[str, Any] | None:
        """Get metadata by entry id."""
        ...

    def entries(self) -> list[dict[str, Any]]:
        """All stored metadata."""
        ...
