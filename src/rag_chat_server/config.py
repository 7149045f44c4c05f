"""
Application Settings

All runtime configuration is read from the environment (and an optional
``.env`` file). Every field has a default so the package can be imported and
tested without a configured environment; provider registration simply skips
vendors whose API key is missing.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    log_level: str = "INFO"

    # API keys
    mistral_api_key: Optional[SecretStr] = None
    groq_api_key: Optional[SecretStr] = None

    # Chat providers
    llm_primary_provider: str = "mistral"
    llm_fallback_provider: str = "groq"
    llm_timeout_seconds: float = Field(default=5.0, gt=0)

    mistral_base_url: str = "https://api.mistral.ai/v1"
    mistral_chat_model: str = "mistral-small-latest"
    mistral_max_temperature: float = 1.5

    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_chat_model: str = "llama3-70b-8192"
    groq_max_temperature: float = 2.0

    chat_max_tokens: int = Field(default=1000, ge=1)
    chat_temperature: float = 0.7
    chat_max_history_length: int = Field(default=10, ge=1)

    # Embeddings
    mistral_embedding_model: str = "mistral-embed"
    fallback_embedding_url: Optional[str] = None
    fallback_embedding_model: str = "text-embedding-3-small"
    fallback_embedding_api_key: Optional[SecretStr] = None
    embedding_timeout_seconds: float = Field(default=10.0, gt=0)
    embedding_max_retries: int = Field(default=3, ge=1)

    # Document store
    document_store_backend: Literal["file", "memory", "sql"] = "file"
    vector_store_path: str = "./data/vector-store"
    database_url: str = "sqlite+aiosqlite:///./data/documents.db"

    # Retrieval
    search_max_results: int = Field(default=5, ge=1)
    search_timeout_seconds: float = Field(default=15.0, gt=0)
    blog_quality_threshold: float = 0.7
    main_page_ratio: float = Field(default=0.7, ge=0.0, le=1.0)
    min_main_page_ratio: float = Field(default=0.5, ge=0.0, le=1.0)

    # Rate limiting (one block per traffic class)
    chat_rate_window_seconds: float = 60.0
    chat_rate_max_requests: int = 5
    chat_rate_block_seconds: float = 600.0
    chat_spam_threshold: int = 3

    embedding_rate_window_seconds: float = 60.0
    embedding_rate_max_requests: int = 3
    embedding_rate_block_seconds: float = 900.0
    embedding_spam_threshold: int = 2

    general_rate_window_seconds: float = 60.0
    general_rate_max_requests: int = 15
    general_rate_block_seconds: float = 300.0
    general_spam_threshold: int = 5

    rate_limit_sweep_seconds: float = 300.0
    rate_limit_state_path: Optional[str] = None

    # Moderation
    max_message_length: int = 1000

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
