from functools import lru_cache
from typing import Optional

from ..config import Settings, settings
from ..embeddings.manager import EmbeddingProviderManager, build_embedding_manager
from ..llm.manager import ChatProviderManager, build_chat_provider_manager
from ..ratelimit import RateLimiters, build_rate_limiters
from ..retrieval.engine import RetrievalConfig, RetrievalEngine
from ..store import DocumentStore, build_document_store


def get_settings() -> Settings:
    return settings


@lru_cache
def get_rate_limiters() -> RateLimiters:
    return build_rate_limiters(settings)


@lru_cache
def get_document_store() -> DocumentStore:
    return build_document_store(settings)


@lru_cache
def get_embedding_manager() -> Optional[EmbeddingProviderManager]:
    return build_embedding_manager(settings)


@lru_cache
def get_retrieval_engine() -> RetrievalEngine:
    return RetrievalEngine(
        store=get_document_store(),
        embeddings=get_embedding_manager(),
        limiter=get_rate_limiters().embedding,
        config=RetrievalConfig.from_settings(settings),
    )


@lru_cache
def get_chat_manager() -> ChatProviderManager:
    return build_chat_provider_manager(settings)
