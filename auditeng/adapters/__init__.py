"""
Adapters - External service integrations.

All external API calls are wrapped here to isolate domains from third-party changes.
Subpackages are imported explicitly so optional heavy dependencies
(faiss, sentence-transformers, google-generativeai) load only when used.
"""

__all__ = [
    "embeddings",
    "faiss",
    "gemini",
    "openai",
    "sqlite",
]
