"""
Tests for page splitting and ingestion into the document store.
"""

from unittest.mock import AsyncMock

import pytest

from rag_chat_server.core.errors import ServerError
from rag_chat_server.ingest import Page, build_splitter, ingest_pages, split_pages
from rag_chat_server.store import DocumentStore, InMemoryBackend

LONG_TEXT = " ".join(f"Sentence number {n} about the program." for n in range(40))


class TestSplitPages:
    """Tests for chunking pages."""

    def test_short_page_is_one_chunk(self):
        page = Page(url="https://example.test/fees", title="Fees", content="Our fees are listed here.")

        (chunk,) = split_pages([page])

        assert chunk.id == "https://example.test/fees#0"
        assert chunk.title == "Fees"
        assert chunk.metadata["chunk_count"] == 1

    def test_long_page_is_split(self):
        page = Page(url="https://example.test/long", content=LONG_TEXT, metadata={"lang": "en"})

        chunks = split_pages([page], build_splitter(chunk_size=200, chunk_overlap=0))

        assert len(chunks) > 1
        assert [c.metadata["chunk_index"] for c in chunks] == list(range(len(chunks)))
        assert all(len(c.content) <= 200 for c in chunks)
        assert all(c.metadata["lang"] == "en" for c in chunks)

    def test_blank_page_yields_nothing(self):
        assert split_pages([Page(url="https://example.test/empty", content="   ")]) == []


class TestIngestPages:
    """Tests for embedding and storing chunks."""

    @pytest.mark.asyncio
    async def test_ingests_with_vectors(self):
        store = DocumentStore(InMemoryBackend())
        embeddings = AsyncMock()
        embeddings.embed.return_value = [[1.0, 0.0], [0.0, 1.0]]
        pages = [
            Page(url="https://example.test/a", content="First page."),
            Page(url="https://example.test/b", content="Second page."),
        ]

        added = await ingest_pages(pages, store, embeddings)
        stats = await store.stats()

        assert added == 2
        assert stats.with_embedding_count == 2
        embeddings.embed.assert_awaited_once_with(["First page.", "Second page."])

    @pytest.mark.asyncio
    async def test_failed_batch_is_stored_without_vectors(self):
        store = DocumentStore(InMemoryBackend())
        embeddings = AsyncMock()
        embeddings.embed.side_effect = [[[1.0, 0.0]], ServerError("down", "mistral")]
        pages = [
            Page(url="https://example.test/a", content="First page."),
            Page(url="https://example.test/b", content="Second page."),
        ]

        added = await ingest_pages(pages, store, embeddings, batch_size=1)
        documents = await store.load_all()

        assert added == 2
        assert documents[0].embedding == [1.0, 0.0]
        assert documents[1].embedding == []

    @pytest.mark.asyncio
    async def test_without_embedding_manager(self):
        store = DocumentStore(InMemoryBackend())

        added = await ingest_pages(
            [Page(url="https://example.test/a", content="First page.")], store, None
        )

        assert added == 1
        assert (await store.stats()).with_embedding_count == 0
