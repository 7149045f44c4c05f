"""
Retrieval Data Models

``ScoredDocument`` is internal to ranking. ``SearchResult`` is what leaves
the engine; embeddings never do.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from ..store.models import Document


@dataclass(frozen=True)
class ScoredDocument:
    document: Document
    similarity: float

    @property
    def is_blog_post(self) -> bool:
        return self.document.is_blog_post


class SearchResult(BaseModel):
    """A ranked document as returned to callers."""

    content: str
    url: str = ""
    title: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_document(cls, document: Document) -> "SearchResult":
        return cls(
            content=document.content,
            url=document.url,
            title=document.title,
            metadata=dict(document.metadata),
        )
