import argparse
import asyncio
import json
import logging
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from rag_chat_server.config import settings
from rag_chat_server.embeddings.manager import build_embedding_manager
from rag_chat_server.ingest import Page, build_splitter, ingest_pages
from rag_chat_server.store import SqlDocumentBackend, build_document_store


def parse_args():
    parser = argparse.ArgumentParser(description="Chunk, embed and store scraped pages.")
    parser.add_argument("pages_file", help="JSON list of {url, title, content, metadata}")
    parser.add_argument("--chunk-size", type=int, default=2000)
    parser.add_argument("--chunk-overlap", type=int, default=200)
    parser.add_argument("--batch-size", type=int, default=20)
    parser.add_argument("--clear", action="store_true", help="Empty the store first")
    return parser.parse_args()


async def main():
    args = parse_args()
    logging.basicConfig(level=settings.log_level.upper())

    with open(args.pages_file, "r", encoding="utf-8") as f:
        pages = [Page(**raw) for raw in json.load(f)]
    print(f"Loaded {len(pages)} pages.")

    store = build_document_store(settings)
    if isinstance(store.backend, SqlDocumentBackend):
        await store.backend.create_schema()

    if args.clear:
        print("Clearing document store...")
        await store.clear()

    embeddings = build_embedding_manager(settings)
    if embeddings is None:
        print("No embedding provider configured; chunks will be stored without vectors.")

    added = await ingest_pages(
        pages,
        store,
        embeddings,
        batch_size=args.batch_size,
        splitter=build_splitter(args.chunk_size, args.chunk_overlap),
    )

    stats = await store.stats()
    print(f"Added {added} chunks. Store now holds {stats.count} ({stats.with_embedding_count} embedded).")

    if isinstance(store.backend, SqlDocumentBackend):
        await store.backend.dispose()


if __name__ == "__main__":
    asyncio.run(main())
