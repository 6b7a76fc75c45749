"""
Settings - Application configuration using Pydantic Settings.

Loads from environment variables and .env files.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Paths
    data_dir: Path = Path("data")
    db_path: Path = Path("data/auditeng.db")
    knowledge_index_path: Path = Path("data/indices/knowledge")

    # Vision provider: "gemini" (google-generativeai) or "openai" (any
    # OpenAI-compatible chat completions endpoint)
    vision_provider: str = "openai"
    extraction_model: str = "gpt-4o"
    extraction_fallback_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_api_key: str | None = None
    gemini_rate_limit_rpm: int = 60

    # Extraction client
    extraction_max_retries: int = 3
    extraction_initial_delay_ms: int = 1000
    extraction_backoff_multiplier: float = 2.0
    extraction_max_delay_ms: int = 10000
    extraction_timeout_seconds: int = 60
    extraction_max_tokens: int = 4000
    extraction_temperature: float = 0.0
    vision_detail: str = "high"

    # Day/month order of non-ISO report dates
    date_format: Literal["DD/MM/YYYY", "MM/DD/YYYY"] = "DD/MM/YYYY"

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_reset_seconds: float = 60.0

    # Embeddings
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_dimension: int = 384
    embedding_max_tokens: int = 8000

    # RAG
    rag_default_limit: int = 5
    rag_default_min_similarity: float = 0.7
    rag_max_context_tokens: int = 4000
    rag_max_similar_analyses: int = 3
    rag_max_corrections: int = 2
    rag_max_standards: int = 2
    rag_analysis_min_similarity: float = 0.65
    rag_correction_min_similarity: float = 0.60
    rag_standard_min_similarity: float = 0.55

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AUDITENG_",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
