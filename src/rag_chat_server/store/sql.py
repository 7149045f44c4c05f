"""
SQL Document Backend

Row-store persistence for the document collection using SQLAlchemy's async
ORM. One row per document plus a single manifest row. Any async driver
works (``postgresql+asyncpg``, ``sqlite+aiosqlite`` ...); vectors are stored
as JSON arrays because ranking is done in-process by linear scan.

``set`` replaces the whole collection inside one transaction, so readers
either see the previous collection or the new one, never a mix.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Integer, String, Text, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..core.errors import DocumentStoreError
from .backends import DocumentCollection
from .models import Document


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class StoredDocumentRow(Base):
    """One document chunk. ``position`` preserves ingestion order."""
    __tablename__ = "stored_document"

    position: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doc_id: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    embedding: Mapped[List[float]] = mapped_column(JSON, nullable=False, default=list)


class StoreManifestRow(Base):
    """Single-row manifest for the collection."""
    __tablename__ = "store_manifest"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    version: Mapped[str] = mapped_column(String(16), nullable=False, default="1.0")


class SqlDocumentBackend:
    """Async SQLAlchemy implementation of the collection backend."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_url(cls, database_url: str) -> "SqlDocumentBackend":
        return cls(create_async_engine(database_url, echo=False))

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    # ------------------------------------------------------------------
    # Backend API
    # ------------------------------------------------------------------

    async def get(self) -> Optional[DocumentCollection]:
        try:
            async with self._sessions() as session:
                manifest = await session.get(StoreManifestRow, 1)
                if manifest is None:
                    return None

                result = await session.execute(
                    select(StoredDocumentRow).order_by(StoredDocumentRow.position)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise DocumentStoreError(
                f"Failed to read document collection: {type(exc).__name__}"
            ) from exc

        return DocumentCollection(
            documents=[
                Document(
                    id=row.doc_id,
                    content=row.content,
                    url=row.url,
                    title=row.title,
                    metadata=row.metadata_ or {},
                    embedding=row.embedding or [],
                )
                for row in rows
            ],
            total_count=manifest.total_count,
            last_updated=manifest.last_updated,
            version=manifest.version,
        )

    async def set(self, collection: DocumentCollection) -> None:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    await session.execute(delete(StoredDocumentRow))
                    await session.execute(delete(StoreManifestRow))

                    session.add_all(
                        StoredDocumentRow(
                            doc_id=doc.id,
                            content=doc.content,
                            url=doc.url,
                            title=doc.title,
                            metadata_=dict(doc.metadata),
                            embedding=list(doc.embedding),
                        )
                        for doc in collection.documents
                    )
                    session.add(
                        StoreManifestRow(
                            id=1,
                            total_count=collection.total_count,
                            last_updated=collection.last_updated,
                            version=collection.version,
                        )
                    )
        except SQLAlchemyError as exc:
            raise DocumentStoreError(
                f"Failed to write document collection: {type(exc).__name__}"
            ) from exc

    async def delete(self) -> None:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    await session.execute(delete(StoredDocumentRow))
                    await session.execute(delete(StoreManifestRow))
        except SQLAlchemyError as exc:
            raise DocumentStoreError(
                f"Failed to delete document collection: {type(exc).__name__}"
            ) from exc
