"""
Document Store Package

Provides the append-only document store, its record models, and the
interchangeable persistence backends.
"""

from .models import ContentChunk, Document, StoreStats
from .backends import (
    DocumentCollection,
    DocumentCollectionBackend,
    InMemoryBackend,
    JsonFileBackend,
)
from .document_store import DocumentStore
from .sql import SqlDocumentBackend

__all__ = [
    "ContentChunk",
    "Document",
    "StoreStats",
    "DocumentCollection",
    "DocumentCollectionBackend",
    "InMemoryBackend",
    "JsonFileBackend",
    "SqlDocumentBackend",
    "DocumentStore",
    "build_document_store",
]


def build_document_store(settings) -> DocumentStore:
    """Create the document store for the configured backend."""
    backend = settings.document_store_backend

    if backend == "memory":
        return DocumentStore(InMemoryBackend())
    if backend == "sql":
        return DocumentStore(SqlDocumentBackend.from_url(settings.database_url))
    return DocumentStore(JsonFileBackend(settings.vector_store_path))
