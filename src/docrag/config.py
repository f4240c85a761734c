"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding API
    openai_api_key: str = Field(default="", description="Bearer token for the embedding and chat APIs")
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-ada-002"
    embedding_timeout: float = Field(default=45.0, description="Per-request timeout in seconds")
    embedding_max_chars: int = Field(default=8000, description="Input is silently truncated to this length")
    embedding_max_retries: int = Field(default=2, description="Retries on transport timeouts only")
    embedding_backoff: float = Field(default=2.0, description="Initial backoff in seconds, doubled per retry")

    # Chunking
    chunk_size: int = 1000
    chunk_overlap: int = 200
    embed_concurrency: int = Field(default=1, description="Parallel embedding calls per document")

    # Resilience
    circuit_failure_threshold: int = 3
    circuit_cooldown_seconds: float = 30.0
    store_max_retries: int = 2
    store_backoff: float = 1.0
    pipeline_max_attempts: int = 3
    pipeline_backoff: float = 1.0
    serialize_same_name_uploads: bool = Field(
        default=False,
        description="Hold a per-(owner, filename) lock around the supersede sequence",
    )

    # Retrieval
    retrieval_top_k: int = 5
    keyword_max_results: int = 5
    keyword_fallback_chunks: int = 3

    # Answer generation
    llm_model_name: str = "gpt-3.5-turbo"
    llm_base_url: str = Field(
        default="",
        description="Base URL for an OpenAI-compatible chat API. Leave empty to use OpenAI cloud.",
    )
    llm_temperature: float = 0.7
    llm_max_tokens: int = 3000
    max_context_chars: int = 13000

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import `settings` wherever needed.
settings = Settings()
