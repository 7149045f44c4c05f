"""
Content Classification

Cheap string heuristics used by the retrieval engine to diversify results:

- ``is_blog_post``: separates evergreen main pages from blog / news posts
- ``detect_query_topic``: assigns a query to the first topic whose keywords
  it mentions
- ``document_topic``: assigns a document to a topic from URL, title and
  content markers

Topics are plain configuration (``TopicRule``), evaluated in order. Anything
that matches no rule belongs to ``GENERAL``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

GENERAL = "general"

BLOG_URL_PATTERNS: Tuple[str, ...] = (
    "/blog/",
    "/news/",
    "/articles/",
    "/post/",
    "/story/",
    "blog.",
    "news.",
)

BLOG_TITLE_MARKERS: Tuple[str, ...] = ("blog", "news", "article")


def is_blog_post(url: str, title: str) -> bool:
    url_lower = (url or "").lower()
    title_lower = (title or "").lower()

    if any(pattern in url_lower for pattern in BLOG_URL_PATTERNS):
        return True
    return any(marker in title_lower for marker in BLOG_TITLE_MARKERS)


# ---------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class TopicRule:
    """
    One topic bucket.

    Attributes
    ----------
    name:
        Topic label returned by the classifiers.
    query_keywords:
        Substrings that put a query into this topic.
    url_markers:
        Substrings of a document URL that put the document into this topic.
    text_markers:
        Substrings of a document title or content that put the document into
        this topic.
    """

    name: str
    query_keywords: Tuple[str, ...]
    url_markers: Tuple[str, ...] = ()
    text_markers: Tuple[str, ...] = ()


DEFAULT_TOPICS: Tuple[TopicRule, ...] = (
    TopicRule(
        name="surrogacy",
        query_keywords=(
            "surrogate",
            "surrogacy",
            "gestational",
            "carrier",
            "pregnancy",
            "birth",
        ),
        url_markers=("surrogacy",),
        text_markers=("surrogacy",),
    ),
    TopicRule(
        name="egg-donor",
        query_keywords=(
            "egg donor",
            "egg donation",
            "donor eggs",
            "egg retrieval",
            "ovulation",
        ),
        url_markers=("egg-donor",),
        text_markers=("egg donor",),
    ),
    TopicRule(
        name="intended-parents",
        query_keywords=(
            "intended parent",
            "intended parents",
            "parent",
            "family",
            "adoption",
            "legal",
        ),
        url_markers=("intended-parents",),
        text_markers=("intended parent",),
    ),
)


def detect_query_topic(query: str, topics: Sequence[TopicRule] = DEFAULT_TOPICS) -> str:
    query_lower = (query or "").lower()
    for topic in topics:
        if any(keyword in query_lower for keyword in topic.query_keywords):
            return topic.name
    return GENERAL


def document_topic(
    url: str,
    title: str,
    content: str,
    topics: Sequence[TopicRule] = DEFAULT_TOPICS,
) -> str:
    url_lower = (url or "").lower()
    title_lower = (title or "").lower()
    content_lower = (content or "").lower()

    for topic in topics:
        if any(marker in url_lower for marker in topic.url_markers):
            return topic.name
        if any(
            marker in title_lower or marker in content_lower
            for marker in topic.text_markers
        ):
            return topic.name
    return GENERAL
