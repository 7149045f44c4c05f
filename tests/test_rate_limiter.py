"""
Rate Limiter Tests

Covers fixed-window admission, escalating blocks, spam tracking, read-only
status, sweeping and JSON persistence. Time is driven by a fake clock.
"""

import asyncio
import json

import pytest

from rag_chat_server.ratelimit import (
    JsonFileSink,
    RateLimitConfig,
    RateLimiter,
    build_rate_limiters,
)
from rag_chat_server.config import Settings


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def make_limiter(clock, max_requests=3, window=60.0, block=None, spam=None, sink=None):
    return RateLimiter(
        RateLimitConfig(
            window_seconds=window,
            max_requests=max_requests,
            block_seconds=block,
            spam_threshold=spam,
        ),
        name="test",
        sink=sink,
        clock=clock,
    )


class TestFixedWindow:
    """Tests for window counting."""

    def test_admits_up_to_max_requests(self, clock):
        limiter = make_limiter(clock, max_requests=3)

        results = [limiter.check("a") for _ in range(3)]

        assert [r.allowed for r in results] == [True, True, True]
        assert [r.remaining for r in results] == [2, 1, 0]
        assert results[0].reset_at == clock.now + 60.0

    def test_denies_request_over_budget(self, clock):
        limiter = make_limiter(clock, max_requests=2)
        limiter.check("a")
        limiter.check("a")

        status = limiter.check("a")

        assert status.allowed is False
        assert status.remaining == 0
        assert status.is_blocked is False
        assert limiter.get_entry("a").count == 2

    def test_new_window_after_reset(self, clock):
        limiter = make_limiter(clock, max_requests=1)
        limiter.check("a")
        assert limiter.check("a").allowed is False

        clock.advance(61)
        status = limiter.check("a")

        assert status.allowed is True
        assert status.remaining == 0
        assert limiter.get_entry("a").count == 1

    def test_identifiers_are_independent(self, clock):
        limiter = make_limiter(clock, max_requests=1)
        limiter.check("a")

        assert limiter.check("a").allowed is False
        assert limiter.check("b").allowed is True

    def test_reset_forgets_identifier(self, clock):
        limiter = make_limiter(clock, max_requests=1)
        limiter.check("a")
        limiter.reset("a")

        assert limiter.get_entry("a") is None
        assert limiter.check("a").allowed is True


class TestBlocking:
    """Tests for escalating blocks."""

    def test_violation_starts_block(self, clock):
        limiter = make_limiter(clock, max_requests=1, block=600)
        limiter.check("a")

        status = limiter.check("a")

        assert status.allowed is False
        assert status.is_blocked is True
        assert status.blocked_until == clock.now + 600

    def test_live_block_dominates_window(self, clock):
        limiter = make_limiter(clock, max_requests=1, window=60, block=600)
        limiter.check("a")
        limiter.check("a")

        # Window has rolled over but the block is still live.
        clock.advance(120)
        status = limiter.check("a")

        assert status.allowed is False
        assert status.is_blocked is True
        assert status.reset_at == status.blocked_until

    def test_expired_block_opens_fresh_window(self, clock):
        limiter = make_limiter(clock, max_requests=2, block=600)
        limiter.check("a")
        limiter.check("a")
        limiter.check("a")

        clock.advance(601)
        status = limiter.check("a")

        assert status.allowed is True
        assert status.is_blocked is False
        assert status.remaining == 1
        assert limiter.get_entry("a").blocked_until is None


class TestSpamTracking:
    """Tests for spam counting and spam blocks."""

    def test_threshold_blocks_immediately(self, clock):
        limiter = make_limiter(clock, block=600, spam=3)

        assert limiter.track_spam("a").should_block is False
        assert limiter.track_spam("a").should_block is False
        result = limiter.track_spam("a")

        assert result.should_block is True
        assert result.block_duration == 600
        assert limiter.check("a").is_blocked is True

    def test_default_spam_block_duration(self, clock):
        limiter = make_limiter(clock, spam=1)

        result = limiter.track_spam("a")

        assert result.should_block is True
        assert result.block_duration == 600
        assert limiter.get_entry("a").blocked_until == clock.now + 600

    def test_spam_count_decays(self, clock):
        limiter = make_limiter(clock, spam=2)
        limiter.track_spam("a")

        clock.advance(301)
        result = limiter.track_spam("a")

        assert result.should_block is False
        assert limiter.get_entry("a").spam_count == 1

    def test_spam_count_survives_new_window(self, clock):
        limiter = make_limiter(clock, spam=5)
        limiter.check("a")
        limiter.track_spam("a")
        limiter.track_spam("a")

        clock.advance(61)
        limiter.check("a")

        assert limiter.get_entry("a").spam_count == 2

    def test_spam_without_threshold_never_blocks(self, clock):
        limiter = make_limiter(clock)
        for _ in range(10):
            assert limiter.track_spam("a").should_block is False


class TestStatusAndCleanup:
    """Tests for read-only status and sweeping."""

    def test_get_status_does_not_count(self, clock):
        limiter = make_limiter(clock, max_requests=2)
        limiter.check("a")

        first = limiter.get_status("a")
        second = limiter.get_status("a")

        assert first == second
        assert first.remaining == 1
        assert limiter.get_entry("a").count == 1

    def test_get_status_unknown_identifier(self, clock):
        limiter = make_limiter(clock, max_requests=4)

        status = limiter.get_status("nobody")

        assert status.allowed is True
        assert status.remaining == 4
        assert limiter.get_entry("nobody") is None

    def test_cleanup_removes_only_expired_unblocked(self, clock):
        limiter = make_limiter(clock, max_requests=1, block=600)
        limiter.check("expired")
        limiter.check("blocked")
        limiter.check("blocked")

        clock.advance(61)
        limiter.check("fresh")
        removed = limiter.cleanup()

        assert removed == 1
        assert limiter.get_entry("expired") is None
        assert limiter.get_entry("blocked") is not None
        assert limiter.get_entry("fresh") is not None

    @pytest.mark.asyncio
    async def test_sweeper_start_and_stop(self, clock):
        limiter = make_limiter(clock)
        limiter.check("a")
        clock.advance(61)

        task = limiter.start_sweeper(interval_seconds=0.01)
        assert limiter.start_sweeper(interval_seconds=0.01) is task

        for _ in range(50):
            if len(limiter) == 0:
                break
            await asyncio.sleep(0.01)

        await limiter.stop_sweeper()

        assert len(limiter) == 0
        assert task.cancelled() or task.done()


class TestPersistence:
    """Tests for the JSON file sink."""

    def test_state_survives_restart(self, clock, tmp_path):
        path = tmp_path / "limits.json"
        limiter = make_limiter(clock, max_requests=1, block=600, sink=JsonFileSink(str(path)))
        limiter.check("a")
        limiter.check("a")

        restored = make_limiter(clock, max_requests=1, block=600, sink=JsonFileSink(str(path)))

        assert restored.check("a").is_blocked is True

    def test_expired_entries_not_restored(self, clock, tmp_path):
        path = tmp_path / "limits.json"
        limiter = make_limiter(clock, sink=JsonFileSink(str(path)))
        limiter.check("a")

        clock.advance(61)
        restored = make_limiter(clock, sink=JsonFileSink(str(path)))

        assert restored.get_entry("a") is None

    def test_sink_failures_are_not_raised(self, clock, tmp_path):
        path = tmp_path / "limits.json"
        path.write_text("{not json")

        limiter = make_limiter(clock, sink=JsonFileSink(str(path)))

        assert limiter.check("a").allowed is True

    def test_limiters_share_file_without_sharing_state(self, clock, tmp_path):
        path = tmp_path / "limits.json"
        sink = JsonFileSink(str(path))
        first = RateLimiter(RateLimitConfig(60, 1), name="chat", sink=sink, clock=clock)
        second = RateLimiter(RateLimitConfig(60, 1), name="general", sink=sink, clock=clock)

        first.check("a")

        assert second.check("a").allowed is True
        assert set(json.loads(path.read_text())) == {"chat", "general"}


class TestTiers:
    """Tests for the three traffic-class limiters."""

    def test_default_thresholds(self):
        limiters = build_rate_limiters(Settings(_env_file=None))

        assert limiters.chat.config.max_requests == 5
        assert limiters.chat.config.spam_threshold == 3
        assert limiters.embedding.config.max_requests == 3
        assert limiters.embedding.config.block_seconds == 900
        assert limiters.general.config.max_requests == 15

    def test_tiers_do_not_share_state(self):
        limiters = build_rate_limiters(Settings(_env_file=None))

        for _ in range(3):
            limiters.embedding.check("a")

        assert limiters.embedding.check("a").allowed is False
        assert limiters.chat.check("a").allowed is True
        assert limiters.general.get_entry("a") is None
