"""
Retrieval Engine

Ranked, topic-aware, diversity-balanced search over the document store.

Pipeline
--------
1. Admission: an embedding-tier rate limit gates the semantic path. A denied
   client is served by the lexical fallback without any embedding call.
2. Eligibility: an empty store yields no results; a store with no embedded
   documents goes straight to the lexical fallback.
3. Semantic path (bounded by one overall timeout): embed the query, score
   every embedded document by cosine similarity, then select from a topic
   pool with a main-page / blog-post priority mix.
4. Lexical fallback: keyword scoring on title, URL and content. Used whenever
   the semantic path is unavailable, slow, or fails.

Key Properties
--------------
- Deterministic for identical inputs (stable sorts everywhere)
- Never raises for a reachable corpus; ``k <= 0`` is a caller error
- Holds no mutable state between calls
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..core.errors import DimensionMismatchError
from ..embeddings.manager import EmbeddingProviderManager
from ..ratelimit.limiter import RateLimiter
from ..store.document_store import DocumentStore
from ..store.models import Document
from .classify import DEFAULT_TOPICS, TopicRule, detect_query_topic, document_topic
from .models import ScoredDocument, SearchResult
from .similarity import cosine_similarity

logger = logging.getLogger("rag.retrieval")


@dataclass(frozen=True)
class RetrievalConfig:
    max_results: int = 5
    search_timeout_seconds: float = 15.0
    blog_quality_threshold: float = 0.7
    main_page_ratio: float = 0.7
    min_main_page_ratio: float = 0.5
    topics: Tuple[TopicRule, ...] = DEFAULT_TOPICS

    @classmethod
    def from_settings(cls, settings) -> "RetrievalConfig":
        return cls(
            max_results=settings.search_max_results,
            search_timeout_seconds=settings.search_timeout_seconds,
            blog_quality_threshold=settings.blog_quality_threshold,
            main_page_ratio=settings.main_page_ratio,
            min_main_page_ratio=settings.min_main_page_ratio,
        )


class RetrievalEngine:
    """
    Search front end combining the store, the embedding manager and the
    embedding-tier rate limiter.

    Parameters
    ----------
    store : DocumentStore
        Source of documents; read in full on every search.
    embeddings : Optional[EmbeddingProviderManager]
        Used to embed the query. When ``None`` only the lexical path runs.
    limiter : Optional[RateLimiter]
        Embedding-tier limiter. When omitted, no admission control is applied.
    config : Optional[RetrievalConfig]
        Ranking and timeout parameters.
    """

    def __init__(
        self,
        store: DocumentStore,
        embeddings: Optional[EmbeddingProviderManager],
        limiter: Optional[RateLimiter] = None,
        config: Optional[RetrievalConfig] = None,
    ) -> None:
        self.store = store
        self.embeddings = embeddings
        self.limiter = limiter
        self.config = config or RetrievalConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        k: Optional[int] = None,
        client_identifier: Optional[str] = None,
    ) -> List[SearchResult]:
        """
        Return up to ``k`` results for ``query``.

        Parameters
        ----------
        query : str
            Free-text question.
        k : Optional[int]
            Number of results. Defaults to ``config.max_results``.
        client_identifier : Optional[str]
            Caller identity for embedding-tier admission. ``None`` disables
            the check.

        Raises
        ------
        ValueError
            If ``k`` is not positive.
        DocumentStoreError
            If the store itself cannot be read.
        """
        if k is None:
            k = self.config.max_results
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")

        semantic_allowed = self.embeddings is not None and self._admit(client_identifier)

        documents = await self.store.load_all()
        if not documents:
            logger.info("Document store is empty; no results for query")
            return []

        embedded = [doc for doc in documents if doc.has_embedding]
        if not semantic_allowed or not embedded:
            if not embedded:
                logger.info("No embedded documents; using lexical search")
            return self._to_results(lexical_search(documents, query, k))

        try:
            ranked = await asyncio.wait_for(
                self._semantic_search(query, embedded, k),
                timeout=self.config.search_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Semantic search exceeded %.1fs; falling back to lexical search",
                self.config.search_timeout_seconds,
            )
            return self._to_results(lexical_search(documents, query, k))
        except Exception as exc:
            logger.warning(
                "Semantic search failed (%s: %s); falling back to lexical search",
                type(exc).__name__,
                exc,
            )
            return self._to_results(lexical_search(documents, query, k))

        return self._to_results([scored.document for scored in ranked])

    # ------------------------------------------------------------------
    # Semantic path
    # ------------------------------------------------------------------

    async def _semantic_search(
        self,
        query: str,
        documents: Sequence[Document],
        k: int,
    ) -> List[ScoredDocument]:
        query_vector = await self.embeddings.embed_one(query)
        dimension = len(documents[0].embedding)
        if len(query_vector) != dimension:
            raise DimensionMismatchError(
                f"Query embedding has dimension {len(query_vector)}, corpus has {dimension}"
            )

        scored = sorted(
            (
                ScoredDocument(document=doc, similarity=cosine_similarity(query_vector, doc.embedding))
                for doc in documents
            ),
            key=lambda item: item.similarity,
            reverse=True,
        )

        topic = detect_query_topic(query, self.config.topics)
        main_pages, blog_posts = self._select_topic_pool(scored, topic, k)
        results = self._select_priority_results(main_pages, blog_posts, k)

        logger.debug(
            "Semantic search: topic=%s, %d candidates, %d selected",
            topic,
            len(scored),
            len(results),
        )
        return results

    def _select_topic_pool(
        self,
        scored: Sequence[ScoredDocument],
        topic: str,
        k: int,
    ) -> Tuple[List[ScoredDocument], List[ScoredDocument]]:
        """
        Split candidates into (main pages, blog posts) for the priority mix.

        When the query topic alone can fill ``k`` slots, only on-topic
        documents are used. Otherwise on-topic documents come first followed
        by the rest, each group keeping similarity order.
        """
        topics = self.config.topics

        def on_topic(item: ScoredDocument) -> bool:
            doc = item.document
            return document_topic(doc.url, doc.title, doc.content, topics) == topic

        main_pages = [item for item in scored if not item.is_blog_post]
        blog_posts = [item for item in scored if item.is_blog_post]

        topic_main = [item for item in main_pages if on_topic(item)]
        topic_blog = [item for item in blog_posts if on_topic(item)]

        if len(topic_main) + len(topic_blog) >= k:
            return topic_main, topic_blog

        other_main = [item for item in main_pages if not on_topic(item)]
        other_blog = [item for item in blog_posts if not on_topic(item)]
        return topic_main + other_main, topic_blog + other_blog

    def _select_priority_results(
        self,
        main_pages: Sequence[ScoredDocument],
        blog_posts: Sequence[ScoredDocument],
        k: int,
    ) -> List[ScoredDocument]:
        """
        Main pages first, then quality blog posts, then whatever is left.

        Both inputs must already be in descending similarity order.
        """
        main_target = min(
            max(
                math.ceil(k * self.config.main_page_ratio),
                math.ceil(k * self.config.min_main_page_ratio),
            ),
            len(main_pages),
        )

        results: List[ScoredDocument] = list(main_pages[:main_target])
        used_blogs = set()

        threshold = self.config.blog_quality_threshold
        for index, item in enumerate(blog_posts):
            if len(results) >= k:
                break
            if item.similarity > threshold:
                results.append(item)
                used_blogs.add(index)

        for item in main_pages[main_target:]:
            if len(results) >= k:
                break
            results.append(item)

        for index, item in enumerate(blog_posts):
            if len(results) >= k:
                break
            if index not in used_blogs:
                results.append(item)

        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _admit(self, client_identifier: Optional[str]) -> bool:
        if client_identifier is None or self.limiter is None:
            return True

        if not client_identifier:
            logger.warning("Empty client identifier; skipping embedding rate limit")
            return True

        status = self.limiter.check(client_identifier)
        if not status.allowed:
            logger.warning(
                "Embedding rate limit hit for %s (blocked=%s); using lexical search",
                client_identifier,
                status.is_blocked,
            )
            return False
        return True

    @staticmethod
    def _to_results(documents: Sequence[Document]) -> List[SearchResult]:
        return [SearchResult.from_document(doc) for doc in documents]


# ---------------------------------------------------------------------
# Lexical fallback
# ---------------------------------------------------------------------

def lexical_search(documents: Sequence[Document], query: str, k: int) -> List[Document]:
    """
    Keyword scoring used when embeddings are unavailable.

    Each query word longer than two characters scores 10 if it appears in
    the title, 8 if it appears in the URL, and 2 per occurrence in the
    content. Documents scoring zero are dropped. Never raises.
    """
    try:
        words = [word for word in (query or "").lower().split() if len(word) > 2]
        if not words or k <= 0:
            return []

        scored: List[Tuple[int, Document]] = []
        for doc in documents:
            title = doc.title.lower()
            url = doc.url.lower()
            content = doc.content.lower()

            score = 0
            for word in words:
                if word in title:
                    score += 10
                if word in url:
                    score += 8
                score += content.count(word) * 2

            if score > 0:
                scored.append((score, doc))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [doc for _, doc in scored[:k]]
    except Exception:
        logger.exception("Lexical search failed")
        return []
