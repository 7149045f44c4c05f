"""
Document Store

A deliberately dumb container for indexed content. It performs no ranking
and no deduplication; the only validation is embedding-dimension consistency
at write time.

Key Properties
--------------
- ``add_content`` appends; it never replaces what the backend already holds
- Each ingestion is a read-modify-write under one lock, so concurrent
  ingestions serialize and no batch is lost or partially visible
- Reads go straight to the backend and may run concurrently with ingestion
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from ..core.errors import DimensionMismatchError
from .backends import DocumentCollection, DocumentCollectionBackend
from .models import ContentChunk, Document, StoreStats

logger = logging.getLogger("rag.store")


class DocumentStore:
    """
    Append-only document collection over a pluggable backend.

    Parameters
    ----------
    backend : DocumentCollectionBackend
        Persistence medium.
    embedding_dimension : Optional[int]
        Expected vector length. When omitted, the dimension is taken from the
        first non-empty embedding the store holds.
    """

    def __init__(
        self,
        backend: DocumentCollectionBackend,
        embedding_dimension: Optional[int] = None,
    ) -> None:
        self.backend = backend
        self._embedding_dimension = embedding_dimension
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_content(
        self,
        chunks: Sequence[ContentChunk],
        embeddings: Sequence[Sequence[float]],
    ) -> int:
        """
        Append new documents built from ``chunks`` and their embeddings.

        ``embeddings[i]`` belongs to ``chunks[i]``. Chunks without a matching
        embedding are stored with an empty vector.

        Returns
        -------
        int
            Number of documents added.

        Raises
        ------
        DimensionMismatchError
            If any non-empty embedding has the wrong length. Nothing from the
            batch is stored in that case.
        """
        if not chunks:
            return 0

        new_documents = [
            Document.from_chunk(
                chunk,
                list(embeddings[index]) if index < len(embeddings) else None,
            )
            for index, chunk in enumerate(chunks)
        ]

        async with self._write_lock:
            collection = await self.backend.get() or DocumentCollection()
            existing = collection.documents

            self._validate_dimensions(existing, new_documents)

            documents = existing + new_documents
            await self.backend.set(
                DocumentCollection(
                    documents=documents,
                    total_count=len(documents),
                    last_updated=datetime.now(timezone.utc).isoformat(),
                    version=collection.version,
                )
            )

        logger.info(
            "Added %d documents (%d with embeddings); store now holds %d",
            len(new_documents),
            sum(1 for d in new_documents if d.has_embedding),
            len(documents),
        )
        return len(new_documents)

    async def clear(self) -> None:
        async with self._write_lock:
            await self.backend.delete()
        logger.info("Cleared document store")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_all(self) -> List[Document]:
        collection = await self.backend.get()
        if collection is None:
            return []
        return list(collection.documents)

    async def stats(self) -> StoreStats:
        collection = await self.backend.get() or DocumentCollection()
        documents = collection.documents
        return StoreStats(
            count=len(documents),
            with_embedding_count=sum(1 for d in documents if d.has_embedding),
            embedding_dimension=self._embedding_dimension or _first_dimension(documents),
            last_updated=collection.last_updated,
        )

    async def sample(self, n: int = 3) -> List[Document]:
        documents = await self.load_all()
        return documents[:n]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate_dimensions(
        self,
        existing: List[Document],
        new_documents: List[Document],
    ) -> None:
        dimension = self._embedding_dimension or _first_dimension(existing)

        for index, doc in enumerate(new_documents):
            if not doc.has_embedding:
                continue
            if dimension is None:
                dimension = len(doc.embedding)
            elif len(doc.embedding) != dimension:
                raise DimensionMismatchError(
                    f"Embedding for chunk {index} ({doc.id!r}) has dimension "
                    f"{len(doc.embedding)}, expected {dimension}."
                )


def _first_dimension(documents: Sequence[Document]) -> Optional[int]:
    for doc in documents:
        if doc.has_embedding:
            return len(doc.embedding)
    return None
