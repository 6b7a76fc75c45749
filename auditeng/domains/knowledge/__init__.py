"""
Knowledge Domain - Retrieval-augmented loop learning.

This domain handles:
- Semantic search over past analyses, corrections and standards
- Token-budgeted prompt context
- Indexing completed analyses and user corrections
- Seeding the technical criteria corpus
"""

from .contracts import Embedder, VectorStore
from .criteria import ALL_CRITERIA, CriteriaCategory, CriteriaDocument, CriteriaIndexer
from .models import (
    ContentType,
    IndexResult,
    KnowledgeEmbedding,
    RAGConfig,
    RAGContext,
    SearchFilters,
    SearchResult,
)
from .prompt_enhancer import RAGPromptEnhancer
from .rag import RAGService

__all__ = [
    # Contracts
    "Embedder",
    "VectorStore",
    # Models
    "ContentType",
    "IndexResult",
    "KnowledgeEmbedding",
    "RAGConfig",
    "RAGContext",
    "SearchFilters",
    "SearchResult",
    "CriteriaCategory",
    "CriteriaDocument",
    "ALL_CRITERIA",
    # Implementations
    "RAGService",
    "RAGPromptEnhancer",
    "CriteriaIndexer",
]
