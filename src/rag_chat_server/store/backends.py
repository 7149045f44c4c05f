"""
Document Collection Backends

The store treats persistence as a single get/set document collection. The
medium is interchangeable:

- ``JsonFileBackend``: one JSON file on local disk (crash-safe replace)
- ``InMemoryBackend``: process memory, for tests and ephemeral deployments
- ``SqlDocumentBackend`` (see ``sql.py``): one row per document

Backends do no validation and no merging; ``DocumentStore`` owns both.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from ..core.errors import DocumentStoreError
from .models import Document

logger = logging.getLogger("rag.store")


class DocumentCollection(BaseModel):
    """Persisted layout: the documents plus a small manifest."""

    documents: List[Document] = Field(default_factory=list)
    total_count: int = Field(default=0, ge=0)
    last_updated: Optional[str] = None
    version: str = "1.0"


class DocumentCollectionBackend(Protocol):
    """Get-all / set-all persistence for the document collection."""

    async def get(self) -> Optional[DocumentCollection]:
        ...

    async def set(self, collection: DocumentCollection) -> None:
        ...

    async def delete(self) -> None:
        ...


# ---------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------

class InMemoryBackend:
    """Keeps the collection in process memory."""

    def __init__(self) -> None:
        self._collection: Optional[DocumentCollection] = None

    async def get(self) -> Optional[DocumentCollection]:
        if self._collection is None:
            return None
        return self._collection.model_copy(
            update={"documents": list(self._collection.documents)}
        )

    async def set(self, collection: DocumentCollection) -> None:
        self._collection = collection.model_copy(
            update={"documents": list(collection.documents)}
        )

    async def delete(self) -> None:
        self._collection = None


# ---------------------------------------------------------------------
# JSON file
# ---------------------------------------------------------------------

class JsonFileBackend:
    """
    Stores the collection as ``<store_path>/documents.json``.

    Writes go to a temporary file that atomically replaces the previous
    version, so readers never observe a partially written collection.
    """

    FILE_NAME = "documents.json"

    def __init__(self, store_path: str) -> None:
        self.store_path = Path(store_path)
        self.data_path = self.store_path / self.FILE_NAME

    async def get(self) -> Optional[DocumentCollection]:
        return await asyncio.to_thread(self._read)

    async def set(self, collection: DocumentCollection) -> None:
        await asyncio.to_thread(self._write, collection)

    async def delete(self) -> None:
        await asyncio.to_thread(self._unlink)

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _read(self) -> Optional[DocumentCollection]:
        if not self.data_path.exists():
            return None

        try:
            with self.data_path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            return DocumentCollection.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            raise DocumentStoreError(
                f"Failed to read document collection: {type(exc).__name__}"
            ) from exc

    def _write(self, collection: DocumentCollection) -> None:
        tmp_path = self.data_path.with_suffix(".json.tmp")

        try:
            self.store_path.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                f.write(collection.model_dump_json())
            tmp_path.replace(self.data_path)
        except OSError as exc:
            raise DocumentStoreError(
                f"Failed to write document collection: {type(exc).__name__}"
            ) from exc

        logger.debug("Wrote %d documents to %s", collection.total_count, self.data_path)

    def _unlink(self) -> None:
        try:
            self.data_path.unlink(missing_ok=True)
        except OSError as exc:
            raise DocumentStoreError(
                f"Failed to delete document collection: {type(exc).__name__}"
            ) from exc
