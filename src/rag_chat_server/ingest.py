"""
Content Ingestion

Turns scraped pages into document-store chunks:

1. Split each page with a recursive character splitter.
2. Embed the chunks in batches through the embedding manager.
3. Append chunks and vectors to the store in one ``add_content`` call.

A batch whose embedding fails is stored without vectors rather than
dropped, so the content stays reachable through lexical search.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter
from pydantic import BaseModel, Field

from .core.errors import ProviderError
from .embeddings.manager import EmbeddingProviderManager
from .store import ContentChunk, DocumentStore

logger = logging.getLogger("rag.ingest")

DEFAULT_CHUNK_SIZE = 2000
DEFAULT_CHUNK_OVERLAP = 200
DEFAULT_BATCH_SIZE = 20


class Page(BaseModel):
    """One scraped page, as produced by extraction tooling."""

    url: str
    title: str = ""
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


def build_splitter(
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
    )


def split_pages(
    pages: Iterable[Page],
    splitter: Optional[RecursiveCharacterTextSplitter] = None,
) -> List[ContentChunk]:
    """Split pages into chunks with ids ``<url>#<n>``."""
    splitter = splitter or build_splitter()
    chunks: List[ContentChunk] = []

    for page in pages:
        pieces = [p for p in splitter.split_text(page.content) if p.strip()]
        for index, piece in enumerate(pieces):
            chunks.append(
                ContentChunk(
                    id=f"{page.url}#{index}",
                    content=piece,
                    url=page.url,
                    title=page.title,
                    metadata={
                        **page.metadata,
                        "url": page.url,
                        "title": page.title,
                        "chunk_index": index,
                        "chunk_count": len(pieces),
                    },
                )
            )

    return chunks


async def ingest_pages(
    pages: Iterable[Page],
    store: DocumentStore,
    embeddings: Optional[EmbeddingProviderManager],
    batch_size: int = DEFAULT_BATCH_SIZE,
    splitter: Optional[RecursiveCharacterTextSplitter] = None,
) -> int:
    """
    Split, embed and store ``pages``.

    Returns
    -------
    int
        Number of chunks added to the store.
    """
    chunks = split_pages(pages, splitter)
    if not chunks:
        logger.info("Nothing to ingest")
        return 0

    vectors: List[List[float]] = []
    for start in range(0, len(chunks), batch_size):
        batch = chunks[start : start + batch_size]

        if embeddings is None:
            vectors.extend([] for _ in batch)
            continue

        try:
            vectors.extend(await embeddings.embed([c.content for c in batch]))
        except ProviderError as exc:
            logger.warning(
                "Embedding failed for chunks %d-%d (%s); storing them without vectors",
                start,
                start + len(batch) - 1,
                exc,
            )
            vectors.extend([] for _ in batch)

    added = await store.add_content(chunks, vectors)
    logger.info("Ingested %d chunks from %d pages", added, len({c.url for c in chunks}))
    return added
