"""
Document Data Models

This module defines the canonical records held by the document store.

Each ``Document`` corresponds to ONE chunk of indexed content and at most ONE
embedding vector. An empty embedding means "not embedded yet"; such documents
are still searchable through the lexical fallback.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..retrieval.classify import is_blog_post


class ContentChunk(BaseModel):
    """
    A piece of content handed to the store for ingestion.

    Produced by scraping / extraction tooling outside the core.
    """

    id: str = Field(..., min_length=1)
    content: str
    url: str = ""
    title: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class Document(BaseModel):
    """
    A single stored document chunk.

    This model is the authoritative schema for:
    - Persistence in every store backend
    - Ranking inside the retrieval engine
    """

    id: str = Field(..., min_length=1)
    content: str
    url: str = ""
    title: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    embedding: List[float] = Field(default_factory=list)

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
    )

    @property
    def has_embedding(self) -> bool:
        return len(self.embedding) > 0

    @property
    def is_blog_post(self) -> bool:
        return is_blog_post(self.url, self.title)

    @classmethod
    def from_chunk(cls, chunk: ContentChunk, embedding: Optional[List[float]]) -> "Document":
        return cls(
            id=chunk.id,
            content=chunk.content,
            url=chunk.url,
            title=chunk.title,
            metadata=dict(chunk.metadata),
            embedding=list(embedding or []),
        )


class StoreStats(BaseModel):
    """Counts reported by ``DocumentStore.stats``."""

    count: int = Field(..., ge=0)
    with_embedding_count: int = Field(..., ge=0)
    embedding_dimension: Optional[int] = None
    last_updated: Optional[str] = None
