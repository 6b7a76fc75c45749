"""
FAISS Adapter - Vector similarity search.
"""

from .index import FAISSVectorStore

__all__ = ["FAISSVectorStore"]
