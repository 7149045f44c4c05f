"""
Embedding Client

Wraps exactly one ``EmbeddingBackend`` with a hard per-call timeout and a
bounded number of attempts separated by exponential backoff (2, 4, 8 ...
seconds). Retries always target the same backend; moving traffic to another
backend is the manager's job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from ..core.errors import ProviderError, ProviderTimeoutError, classify_provider_error
from .backends import EmbeddingBackend

logger = logging.getLogger("rag.embedder")


class EmbeddingClient:
    """Timeout + retry policy around a single embedding backend."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.backend.name

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed ``texts``, retrying up to ``max_retries`` attempts in total.

        The last attempt's error is re-raised once all attempts fail.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=2, exp_base=2),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                return await self.embed_once(texts)

    async def embed_once(self, texts: Sequence[str]) -> List[List[float]]:
        """Single attempt, raced against the timeout. No retry."""
        try:
            return await asyncio.wait_for(
                self.backend.embed(texts),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                f"{self.name} embedding timed out after {self.timeout_seconds}s",
                self.name,
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_provider_error(exc, self.name, self.backend.model) from exc

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            "%s embedding attempt %d/%d failed (%s); retrying in %.0fs",
            self.name,
            retry_state.attempt_number,
            self.max_retries,
            exc,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )
