"""
Embedding Provider Manager

Retry-then-failover: the primary client is tried until its retries are
exhausted, and only then is the fallback client tried, exactly once. If the
fallback also fails, the primary's error is the one that propagates.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .backends import HttpEmbeddingBackend
from .client import EmbeddingClient

logger = logging.getLogger("rag.embedder")


class EmbeddingProviderManager:
    """Primary/fallback pair of embedding clients."""

    def __init__(
        self,
        primary: EmbeddingClient,
        fallback: Optional[EmbeddingClient] = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed a batch of texts with automatic failover.

        An empty batch returns ``[]`` without calling any backend.
        """
        if not texts:
            return []

        try:
            return await self.primary.embed(texts)
        except Exception as primary_error:
            if self.fallback is None:
                raise

            logger.warning(
                "Primary embedding provider (%s) failed, trying fallback %s: %s",
                self.primary.name,
                self.fallback.name,
                primary_error,
            )

            try:
                return await self.fallback.embed_once(texts)
            except Exception as fallback_error:
                logger.error(
                    "Fallback embedding provider (%s) failed: %s",
                    self.fallback.name,
                    fallback_error,
                )
                raise primary_error

    async def embed_one(self, text: str) -> List[float]:
        """Embed a single text."""
        embeddings = await self.embed([text])
        return embeddings[0]


# ---------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------

def build_embedding_manager(settings, transport=None) -> Optional[EmbeddingProviderManager]:
    """
    Build the primary (Mistral) and optional fallback embedding clients.

    Returns ``None`` when no embedding backend has credentials; search then
    runs on the lexical path only.
    """
    clients: List[EmbeddingClient] = []

    if settings.mistral_api_key is not None:
        clients.append(
            EmbeddingClient(
                HttpEmbeddingBackend(
                    name="mistral",
                    api_key=settings.mistral_api_key.get_secret_value(),
                    model=settings.mistral_embedding_model,
                    base_url=settings.mistral_base_url,
                    transport=transport,
                ),
                timeout_seconds=settings.embedding_timeout_seconds,
                max_retries=settings.embedding_max_retries,
            )
        )

    if settings.fallback_embedding_url:
        api_key = settings.fallback_embedding_api_key
        clients.append(
            EmbeddingClient(
                HttpEmbeddingBackend(
                    name="fallback",
                    api_key=api_key.get_secret_value() if api_key is not None else "",
                    model=settings.fallback_embedding_model,
                    base_url=settings.fallback_embedding_url,
                    transport=transport,
                ),
                timeout_seconds=settings.embedding_timeout_seconds,
                max_retries=settings.embedding_max_retries,
            )
        )

    if not clients:
        logger.warning("No embedding provider configured; semantic search disabled")
        return None

    return EmbeddingProviderManager(
        primary=clients[0],
        fallback=clients[1] if len(clients) > 1 else None,
    )
