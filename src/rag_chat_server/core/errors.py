"""
Error Taxonomy and Global Error Handling

This module defines every exception the retrieval-and-failover core raises,
the message-based classifier used to turn raw provider failures into typed
errors, and the FastAPI exception handlers registered by the application.

Design Goals
------------
- Callers can decide to retry, show a message, or fail fast from the type alone
- Never leak internal exception details to HTTP clients
- Always return deterministic, machine-readable error responses
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Dict, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("rag.errors")


# ---------------------------------------------------------------------
# Provider Errors (embedding and chat backends)
# ---------------------------------------------------------------------

class ProviderError(RuntimeError):
    """Base error for failures reported by an embedding or chat provider."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """The provider call exceeded its deadline."""


class BackendUnavailableError(ProviderError):
    """Network or HTTP failure talking to a provider."""


class ServerError(BackendUnavailableError):
    """The provider answered with a 5xx."""


class AuthenticationFailedError(ProviderError):
    """The provider rejected our credentials."""


class PayloadTooLargeError(ProviderError):
    """The request body exceeded the provider's size limit."""


class ProviderRateLimitedError(ProviderError):
    """The provider throttled us (distinct from our own admission control)."""


class InvalidModelError(ProviderError):
    """The requested model does not exist for the provider."""


class NoContentError(ProviderError):
    """The provider returned a successful but empty response."""


class UnknownProviderError(KeyError):
    """A provider name was not registered with the manager."""


# ---------------------------------------------------------------------
# Admission Control Errors (our own rate limiter)
# ---------------------------------------------------------------------

class RateLimitExceededError(RuntimeError):
    """The client used up its request window."""

    def __init__(self, message: str, reset_at: float) -> None:
        super().__init__(message)
        self.reset_at = reset_at

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_at - now))


class BlockedError(RateLimitExceededError):
    """The client is locked out after spam or repeated limit violations."""


# ---------------------------------------------------------------------
# Document Store Errors
# ---------------------------------------------------------------------

class DocumentStoreError(RuntimeError):
    """Base error for document store failures."""


class DimensionMismatchError(DocumentStoreError):
    """An ingested embedding does not match the store's dimension."""


# ---------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------

def _error_text(exc: BaseException) -> str:
    text = str(exc)
    if isinstance(exc, httpx.HTTPStatusError):
        text = f"{exc.response.status_code} {text}"
    return text


def classify_provider_error(
    exc: BaseException,
    provider: str,
    model: Optional[str] = None,
) -> ProviderError:
    """
    Map an arbitrary provider failure onto the error taxonomy.

    Classification inspects the error message (and the HTTP status code when
    the error came from httpx), in this order: authentication, payload size,
    rate limiting, server error, invalid model. Anything else becomes a
    generic ``BackendUnavailableError``.

    Already-classified errors are returned unchanged.

    Parameters
    ----------
    exc : BaseException
        The raw failure.
    provider : str
        Name of the provider that produced it.
    model : Optional[str]
        Model in use, for the invalid-model message.

    Returns
    -------
    ProviderError
        A typed error; the caller is expected to ``raise ... from exc``.
    """
    if isinstance(exc, ProviderError):
        return exc

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ProviderTimeoutError(f"{provider} request timed out", provider)

    text = _error_text(exc)
    lowered = text.lower()

    if "401" in text or "unauthorized" in lowered:
        return AuthenticationFailedError(
            f"{provider} API authentication failed - invalid API key", provider
        )
    if "413" in text or "too large" in lowered:
        return PayloadTooLargeError(f"{provider} API request too large", provider)
    if "429" in text or "rate limit" in lowered:
        return ProviderRateLimitedError(f"{provider} API rate limit exceeded", provider)
    if "500" in text or "internal server error" in lowered:
        return ServerError(f"{provider} API server error", provider)
    if "model" in lowered:
        return InvalidModelError(
            f"{provider} model '{model}' not found or invalid", provider
        )
    return BackendUnavailableError(f"{provider} API error: {text}", provider)


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def rate_limit_exception_handler(
    request: Request,
    exc: RateLimitExceededError,
) -> JSONResponse:
    """
    Translate admission-control denials into HTTP 429.

    These errors are never retried by the server; the client receives the
    wait time so it can act on it.
    """
    retry_after = exc.retry_after()
    blocked = isinstance(exc, BlockedError)

    logger.warning(
        "Rejected %s %s (%s, retry after %ss)",
        request.method,
        request.url.path,
        "blocked" if blocked else "rate limited",
        retry_after,
    )

    payload: Dict[str, Any] = {
        "error": "blocked" if blocked else "rate_limit_exceeded",
        "detail": str(exc),
        "reset_at": exc.reset_at,
        "retry_after": retry_after,
    }

    return JSONResponse(
        status_code=429,
        content=payload,
        headers={"Retry-After": str(retry_after)},
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Logs the full stack trace internally and returns a generic 500 with no
    internal details.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
