"""
FAISS Vector Store - Cosine similarity search with metadata filtering.

Features:
- Async-compatible operations
- Exact inner-product search over L2-normalized vectors (cosine)
- Predicate filtering on stored metadata
- Metadata updates in place (use counts, correctness flags)
- Index persistence
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

import faiss
import numpy as np

logger = logging.getLogger(__name__)

__all__ = ["FAISSVectorStore"]

MetadataPredicate = Callable[[dict[str, Any]], bool]


class FAISSVectorStore:
    """
    FAISS-backed vector store for the knowledge index.

    Example:
        >>> store = FAISSVectorStore(dimension=384)
        >>> entry_id = await store.insert(embedding, {"content_type": "ANALYSIS_RESULT"})
        >>> matches = await store.nearest(query_embedding, k=3)
    """

    def __init__(self, dimension: int = 384) -> None:
        """
        Initialize vector store.

        Args:
            dimension: Vector dimension (384 for MiniLM, 768 for MPNet)
        """
        self.dimension = dimension

        self._index: faiss.Index | None = None
        self._metadata: list[dict[str, Any]] = []
        self._positions: dict[str, int] = {}
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize empty index."""
        self._index = faiss.IndexFlatIP(self.dimension)
        self._metadata = []
        self._positions = {}
        logger.info("FAISS vector store initialized: dimension=%d", self.dimension)

    def _prepare(self, vector: np.ndarray) -> np.ndarray:
        vector = np.asarray(vector, dtype="float32")
        if vector.ndim == 1:
            vector = vector.reshape(1, -1)
        if vector.shape[1] != self.dimension:
            raise ValueError(
                f"Vector dimension {vector.shape[1]} does not match index dimension {self.dimension}"
            )
        vector = np.ascontiguousarray(vector)
        # Normalize for inner product (cosine similarity)
        faiss.normalize_L2(vector)
        return vector

    async def insert(self, embedding: np.ndarray, metadata: dict[str, Any]) -> str:
        """
        Append one vector with its metadata.

        Args:
            embedding: Vector of shape (dimension,)
            metadata: JSON-serializable metadata; "id" is generated if absent

        Returns:
            Entry id
        """
        if self._index is None:
            await self.initialize()
        assert self._index is not None  # Guaranteed by initialize()

        vector = self._prepare(embedding)
        entry = dict(metadata)
        entry_id = str(entry.get("id") or uuid.uuid4())
        entry["id"] = entry_id

        # FAISS row order and metadata order must stay aligned
        async with self._write_lock:
            await asyncio.to_thread(self._index.add, vector)
            self._positions[entry_id] = len(self._metadata)
            self._metadata.append(entry)

        logger.debug("Inserted vector %s", entry_id)
        return entry_id

    async def nearest(
        self,
        query_embedding: np.ndarray,
        k: int = 10,
        predicate: MetadataPredicate | None = None,
    ) -> list[dict[str, Any]]:
        """
        Rank stored vectors by cosine similarity to the query.

        Args:
            query_embedding: Query vector of shape (dimension,)
            k: Maximum number of results
            predicate: Optional metadata filter applied before truncation to k

        Returns:
            List of dicts with 'score', 'index', and 'metadata', best first
        """
        if self._index is None or self._index.ntotal == 0 or k <= 0:
            return []

        query = self._prepare(query_embedding)

        # Exact search over everything when filtering so k survivors are found
        limit = self._index.ntotal if predicate else min(k, self._index.ntotal)
        scores, indices = await asyncio.to_thread(self._index.search, query, limit)

        results: list[dict[str, Any]] = []
        for score, idx in zip(scores[0], indices[0]):
            if idx < 0 or idx >= len(self._metadata):
                continue
            metadata = self._metadata[idx]
            if predicate and not predicate(metadata):
                continue
            results.append({"score": float(score), "index": int(idx), "metadata": metadata})
            if len(results) >= k:
                break

        return results

    async def update(self, entry_id: str, changes: dict[str, Any]) -> bool:
        """
        Update metadata of one entry.

        Returns:
            True if the entry exists
        """
        position = self._positions.get(entry_id)
        if position is None:
            return False
        self._metadata[position].update(changes)
        return True

    def get(self, entry_id: str) -> dict[str, Any] | None:
        """Get metadata by entry id."""
        position = self._positions.get(entry_id)
        if position is None:
            return None
        return self._metadata[position]

    def entries(self) -> list[dict[str, Any]]:
        """All stored metadata in insertion order."""
        return list(self._metadata)

    async def save(self, path: str | Path) -> None:
        """
        Save index to disk.

        Args:
            path: Directory to save index
        """
        if self._index is None:
            await self.initialize()

        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)

        index_path = path / "faiss_index.bin"
        await asyncio.to_thread(faiss.write_index, self._index, str(index_path))

        metadata_path = path / "metadata.json"
        data = {"dimension": self.dimension, "metadata": self._metadata}
        await asyncio.to_thread(self._write_json, metadata_path, data)

        logger.info("Vector store saved to %s (%d vectors)", path, self.size)

    @staticmethod
    def _write_json(path: Path, data: dict[str, Any]) -> None:
        """Write JSON file (sync helper for to_thread)."""
        with open(path, "w") as f:
            json.dump(data, f, default=str)

    async def load(self, path: str | Path) -> None:
        """
        Load index from disk.

        Args:
            path: Directory containing saved index
        """
        path = Path(path)

        index_path = path / "faiss_index.bin"
        self._index = await asyncio.to_thread(faiss.read_index, str(index_path))

        metadata_path = path / "metadata.json"
        data = await asyncio.to_thread(self._read_json, metadata_path)
        self.dimension = data["dimension"]
        self._metadata = data["metadata"]
        self._positions = {entry["id"]: i for i, entry in enumerate(self._metadata)}

        logger.info("Vector store loaded from %s (%d vectors)", path, self.size)

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any]:
        """Read JSON file (sync helper for to_thread)."""
        with open(path) as f:
            result: dict[str, Any] = json.load(f)
            return result

    @property
    def size(self) -> int:
        """Get number of vectors in index."""
        return self._index.ntotal if self._index else 0
