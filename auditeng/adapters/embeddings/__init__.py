"""
Embeddings Adapter - Text embedding functions.
"""

from .encoder import SentenceTransformerEmbedder, truncate_for_embedding

__all__ = ["SentenceTransformerEmbedder", "truncate_for_embedding"]
