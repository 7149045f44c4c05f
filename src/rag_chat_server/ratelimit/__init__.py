"""
Rate Limiting Package

Provides the fixed-window limiter, its optional persistence sinks, and the
three independent traffic-class limiters used by the application.
"""

from dataclasses import dataclass
from typing import Iterator, Optional

from .limiter import (
    RateLimitConfig,
    RateLimitEntry,
    RateLimitStatus,
    RateLimiter,
    SpamStatus,
)
from .sinks import JsonFileSink, RateLimitSink


@dataclass
class RateLimiters:
    """The chat, embedding and general limiters. They never share state."""
    chat: RateLimiter
    embedding: RateLimiter
    general: RateLimiter

    def __iter__(self) -> Iterator[RateLimiter]:
        return iter((self.chat, self.embedding, self.general))


def build_rate_limiters(settings, sink: Optional[RateLimitSink] = None) -> RateLimiters:
    """Create the three traffic-class limiters from application settings."""
    if sink is None and settings.rate_limit_state_path:
        sink = JsonFileSink(settings.rate_limit_state_path)

    return RateLimiters(
        chat=RateLimiter(
            RateLimitConfig(
                window_seconds=settings.chat_rate_window_seconds,
                max_requests=settings.chat_rate_max_requests,
                block_seconds=settings.chat_rate_block_seconds,
                spam_threshold=settings.chat_spam_threshold,
            ),
            name="chat",
            sink=sink,
        ),
        embedding=RateLimiter(
            RateLimitConfig(
                window_seconds=settings.embedding_rate_window_seconds,
                max_requests=settings.embedding_rate_max_requests,
                block_seconds=settings.embedding_rate_block_seconds,
                spam_threshold=settings.embedding_spam_threshold,
            ),
            name="embedding",
            sink=sink,
        ),
        general=RateLimiter(
            RateLimitConfig(
                window_seconds=settings.general_rate_window_seconds,
                max_requests=settings.general_rate_max_requests,
                block_seconds=settings.general_rate_block_seconds,
                spam_threshold=settings.general_spam_threshold,
            ),
            name="general",
            sink=sink,
        ),
    )


__all__ = [
    "RateLimitConfig",
    "RateLimitEntry",
    "RateLimitStatus",
    "RateLimiter",
    "RateLimiters",
    "SpamStatus",
    "RateLimitSink",
    "JsonFileSink",
    "build_rate_limiters",
]
