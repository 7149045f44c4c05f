"""
Rate Limiter

Fixed-window admission control per client identifier, with escalating blocks
and spam tracking.

Each identifier owns one ``RateLimitEntry``, created lazily on its first
request. Entries are only mutated inside short critical sections guarded by
the limiter's lock, so a cancelled request can never leave an entry half
updated. Separate limiter instances (chat, embedding, general) never share
entries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from threading import RLock
from typing import Callable, Dict, NamedTuple, Optional

from .sinks import RateLimitSink

logger = logging.getLogger("rag.ratelimit")

SPAM_DECAY_SECONDS = 5 * 60
DEFAULT_SPAM_BLOCK_SECONDS = 10 * 60


@dataclass(frozen=True)
class RateLimitConfig:
    """Thresholds for one traffic class."""
    window_seconds: float
    max_requests: int
    block_seconds: Optional[float] = None
    spam_threshold: Optional[int] = None


@dataclass
class RateLimitEntry:
    """Mutable per-identifier state. Owned by exactly one limiter."""
    identifier: str
    count: int
    reset_at: float
    blocked_until: Optional[float] = None
    spam_count: int = 0
    last_spam_at: float = 0.0

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until


class RateLimitStatus(NamedTuple):
    """Outcome of an admission check."""
    allowed: bool
    remaining: int
    reset_at: float
    is_blocked: bool
    blocked_until: Optional[float]
    window_seconds: float
    max_requests: int


class SpamStatus(NamedTuple):
    """Outcome of recording a spam event."""
    should_block: bool
    block_duration: Optional[float] = None


@dataclass
class RateLimiter:
    """
    Fixed-window rate limiter.

    Parameters
    ----------
    config : RateLimitConfig
        Window size, request budget, block duration and spam threshold.
    name : str
        Label used in logs and as the persistence key.
    sink : Optional[RateLimitSink]
        Optional persistence target. Sink failures are logged and ignored.
    clock : Callable[[], float]
        Returns the current time in seconds. Injected for tests.
    """

    config: RateLimitConfig
    name: str = "rate-limiter"
    sink: Optional[RateLimitSink] = None
    clock: Callable[[], float] = time.time

    _entries: Dict[str, RateLimitEntry] = field(default_factory=dict, init=False, repr=False)
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    _sweeper: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self._restore()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def check(self, identifier: str) -> RateLimitStatus:
        """
        Count one request for ``identifier`` and decide whether to admit it.

        A live block always wins over the window state. Exceeding the window
        budget denies the request and, when a block duration is configured,
        starts a block.
        """
        now = self.clock()

        with self._lock:
            entry = self._entries.get(identifier)

            if entry is not None and entry.is_blocked(now):
                return self._status(
                    allowed=False,
                    remaining=0,
                    reset_at=entry.blocked_until,
                    blocked_until=entry.blocked_until,
                )

            if entry is None or now > entry.reset_at or entry.blocked_until is not None:
                entry = self._open_window(identifier, entry, now)
                status = self._status(
                    allowed=True,
                    remaining=self.config.max_requests - 1,
                    reset_at=entry.reset_at,
                )
            elif entry.count >= self.config.max_requests:
                if self.config.block_seconds:
                    entry.blocked_until = now + self.config.block_seconds
                    logger.warning(
                        "[%s] %s exceeded %d requests; blocked for %.0fs",
                        self.name,
                        identifier,
                        self.config.max_requests,
                        self.config.block_seconds,
                    )
                status = self._status(
                    allowed=False,
                    remaining=0,
                    reset_at=entry.reset_at,
                    blocked_until=entry.blocked_until,
                )
            else:
                entry.count += 1
                status = self._status(
                    allowed=True,
                    remaining=self.config.max_requests - entry.count,
                    reset_at=entry.reset_at,
                )

        self._persist()
        return status

    def get_status(self, identifier: str) -> RateLimitStatus:
        """Report what ``check`` would decide, without counting a request."""
        now = self.clock()

        with self._lock:
            entry = self._entries.get(identifier)

            if entry is not None and entry.is_blocked(now):
                return self._status(
                    allowed=False,
                    remaining=0,
                    reset_at=entry.blocked_until,
                    blocked_until=entry.blocked_until,
                )

            if entry is None or now > entry.reset_at or entry.blocked_until is not None:
                return self._status(
                    allowed=True,
                    remaining=self.config.max_requests,
                    reset_at=now + self.config.window_seconds,
                )

            return self._status(
                allowed=entry.count < self.config.max_requests,
                remaining=max(0, self.config.max_requests - entry.count),
                reset_at=entry.reset_at,
            )

    # ------------------------------------------------------------------
    # Spam tracking
    # ------------------------------------------------------------------

    def track_spam(self, identifier: str) -> SpamStatus:
        """
        Record one spam event for ``identifier``.

        The spam counter resets after five minutes without spam. Reaching the
        configured threshold blocks the identifier immediately, independent of
        its request window.
        """
        now = self.clock()

        with self._lock:
            entry = self._entries.get(identifier)

            if entry is None:
                entry = RateLimitEntry(
                    identifier=identifier,
                    count=0,
                    reset_at=now + self.config.window_seconds,
                )
                self._entries[identifier] = entry
            elif now - entry.last_spam_at > SPAM_DECAY_SECONDS:
                entry.spam_count = 0

            entry.spam_count += 1
            entry.last_spam_at = now

            threshold = self.config.spam_threshold
            if threshold and entry.spam_count >= threshold:
                duration = self.config.block_seconds or DEFAULT_SPAM_BLOCK_SECONDS
                entry.blocked_until = now + duration
                result = SpamStatus(should_block=True, block_duration=duration)
                logger.warning(
                    "[%s] %s reached spam threshold %d; blocked for %.0fs",
                    self.name,
                    identifier,
                    threshold,
                    duration,
                )
            else:
                result = SpamStatus(should_block=False)

        self._persist()
        return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._entries.pop(identifier, None)
        self._persist()

    def get_entry(self, identifier: str) -> Optional[RateLimitEntry]:
        with self._lock:
            return self._entries.get(identifier)

    def cleanup(self) -> int:
        """
        Drop entries whose window has passed and which are not blocked.

        Returns
        -------
        int
            Number of entries removed.
        """
        now = self.clock()

        with self._lock:
            expired = [
                identifier
                for identifier, entry in self._entries.items()
                if now > entry.reset_at and not entry.is_blocked(now)
            ]
            for identifier in expired:
                del self._entries[identifier]

        if expired:
            logger.debug("[%s] swept %d expired entries", self.name, len(expired))
            self._persist()
        return len(expired)

    def start_sweeper(self, interval_seconds: float = 300.0) -> asyncio.Task:
        """Start the periodic cleanup task on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(
                self._sweep_forever(interval_seconds),
                name=f"{self.name}-sweeper",
            )
        return self._sweeper

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.cleanup()

    def _open_window(
        self,
        identifier: str,
        previous: Optional[RateLimitEntry],
        now: float,
    ) -> RateLimitEntry:
        entry = RateLimitEntry(
            identifier=identifier,
            count=1,
            reset_at=now + self.config.window_seconds,
        )
        if previous is not None:
            entry.spam_count = previous.spam_count
            entry.last_spam_at = previous.last_spam_at
        self._entries[identifier] = entry
        return entry

    def _status(
        self,
        allowed: bool,
        remaining: int,
        reset_at: float,
        blocked_until: Optional[float] = None,
    ) -> RateLimitStatus:
        return RateLimitStatus(
            allowed=allowed,
            remaining=remaining,
            reset_at=reset_at,
            is_blocked=blocked_until is not None,
            blocked_until=blocked_until,
            window_seconds=self.config.window_seconds,
            max_requests=self.config.max_requests,
        )

    def _restore(self) -> None:
        if self.sink is None:
            return

        try:
            stored = self.sink.load(self.name)
        except Exception:
            logger.exception("[%s] failed to load rate limit state", self.name)
            return

        now = self.clock()
        with self._lock:
            for entry in stored:
                if now < entry.reset_at or entry.is_blocked(now):
                    self._entries[entry.identifier] = entry

    def _persist(self) -> None:
        if self.sink is None:
            return

        with self._lock:
            snapshot = list(self._entries.values())

        try:
            self.sink.save(self.name, snapshot)
        except Exception:
            logger.exception("[%s] failed to save rate limit state", self.name)
