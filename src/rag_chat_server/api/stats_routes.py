"""
Store and rate-limit introspection.

Read-only endpoints; none of them consume rate-limit budget.
"""

import time
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from ..moderation import client_identifier
from ..ratelimit import RateLimiters
from ..store import DocumentStore, StoreStats
from .dependencies import get_document_store, get_rate_limiters
from .models import RateLimitStatusResponse

router = APIRouter(tags=["stats"])


@router.get("/documents/stats", response_model=StoreStats)
async def document_stats(
    store: Annotated[DocumentStore, Depends(get_document_store)],
) -> StoreStats:
    return await store.stats()


@router.get("/rate-limit", response_model=RateLimitStatusResponse)
def rate_limit_status(
    request: Request,
    limiters: Annotated[RateLimiters, Depends(get_rate_limiters)],
) -> RateLimitStatusResponse:
    """Chat-tier status for the calling client, without counting a request."""
    status = limiters.chat.get_status(client_identifier(request.headers))
    now = time.time()

    return RateLimitStatusResponse(
        allowed=status.allowed,
        remaining=status.remaining,
        reset_at=status.reset_at,
        is_blocked=status.is_blocked,
        blocked_until=status.blocked_until,
        window_seconds=status.window_seconds,
        max_requests=status.max_requests,
        time_until_reset=max(0.0, status.reset_at - now),
        time_until_unblock=max(0.0, status.blocked_until - now) if status.blocked_until else 0.0,
    )
