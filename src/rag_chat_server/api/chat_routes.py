"""
Chat Routes: Retrieval-Augmented Conversation

This module implements the conversational endpoint. For every request it:

1. Identifies the client (IP + user agent prefix) and rejects obvious bots.
2. Applies the chat-tier rate limit (HTTP 429 when denied or blocked).
3. Moderates the latest user message. Rejected messages count as spam on
   the chat limiter and receive a fixed reply; reaching the spam threshold
   blocks the client.
4. Retrieves grounding documents and builds the system prompt.
5. Streams the model reply through the provider manager, which fails over
   on its own. If every provider fails, a generic degraded reply is sent.

Non-streaming replies (``options.stream = false``) return JSON with the
answer and the source links.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Annotated, AsyncIterator, List

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse, StreamingResponse

from .. import moderation
from ..config import Settings
from ..core.errors import (
    BlockedError,
    DocumentStoreError,
    ProviderError,
    RateLimitExceededError,
)
from ..llm.manager import ChatProviderManager
from ..llm.providers import ChatMessage as LLMMessage
from ..llm.providers import ChatOverrides
from ..prompts import build_chat_prompt, format_context
from ..ratelimit import RateLimiter, RateLimiters
from ..retrieval.engine import RetrievalEngine
from ..retrieval.models import SearchResult
from .dependencies import (
    get_chat_manager,
    get_rate_limiters,
    get_retrieval_engine,
    get_settings,
)
from .models import ChatRequest, ChatResponse, SourceLink

logger = logging.getLogger("rag.app")

router = APIRouter(tags=["chat"])


# ---------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------

def _enforce_rate_limit(limiter: RateLimiter, identifier: str) -> None:
    status_ = limiter.check(identifier)
    if status_.allowed:
        return

    if status_.is_blocked and status_.blocked_until is not None:
        raise BlockedError(
            moderation.blocked_spam_message(status_.blocked_until - time.time()),
            reset_at=status_.blocked_until,
        )

    retry_after = max(0, math.ceil(status_.reset_at - time.time()))
    raise RateLimitExceededError(
        moderation.rate_limited_message(retry_after),
        reset_at=status_.reset_at,
    )


def _moderation_reply(
    reason: str,
    spam_count: int,
    max_length: int,
) -> str:
    if reason == "gibberish":
        return moderation.GIBBERISH_FIRST if spam_count <= 1 else moderation.GIBBERISH_REPEATED
    if reason == "too_long":
        return moderation.MESSAGE_TOO_LONG.format(max_length=max_length)
    if reason == "duplicate":
        return moderation.DUPLICATE_MESSAGE
    return moderation.NO_CONTENT


def _unique_sources(results: List[SearchResult]) -> List[SourceLink]:
    seen = set()
    sources: List[SourceLink] = []
    for result in results:
        if not result.url or result.url in seen:
            continue
        seen.add(result.url)
        sources.append(SourceLink(url=result.url, title=result.title or result.url))
    return sources


async def _degrading_stream(
    chunks: AsyncIterator[str],
) -> AsyncIterator[str]:
    has_yielded = False
    try:
        async for chunk in chunks:
            has_yielded = True
            yield chunk
    except ProviderError as exc:
        logger.error("Chat generation failed on every provider: %s", exc)
        yield moderation.ERROR_GENERIC if not has_yielded else "\n\n" + moderation.ERROR_GENERIC


# ---------------------------------------------------------------------
# Chat Route
# ---------------------------------------------------------------------

@router.post(
    "/chat",
    summary="Chat with retrieval-augmented context",
    status_code=status.HTTP_200_OK,
    response_model=None,
)
async def chat(
    req: ChatRequest,
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    limiters: Annotated[RateLimiters, Depends(get_rate_limiters)],
    engine: Annotated[RetrievalEngine, Depends(get_retrieval_engine)],
    chat_manager: Annotated[ChatProviderManager, Depends(get_chat_manager)],
):
    """
    Answer the latest user message using retrieved context.

    Returns ``text/plain`` chunks by default, or ``ChatResponse`` JSON when
    ``options.stream`` is false. Rate-limit denials raise and are turned into
    HTTP 429 by the application's exception handler.
    """
    if moderation.is_bot_user_agent(request.headers.get("user-agent")):
        return PlainTextResponse(moderation.BOT_ACCESS_DENIED, status_code=status.HTTP_403_FORBIDDEN)

    identifier = moderation.client_identifier(request.headers)
    _enforce_rate_limit(limiters.chat, identifier)

    latest = req.messages[-1]
    previous_user_messages = [m.content for m in req.messages[:-1] if m.role == "user"]

    verdict = moderation.validate_message(
        latest.content,
        max_length=settings.max_message_length,
        previous_messages=previous_user_messages,
    )
    if not verdict.is_valid:
        spam = limiters.chat.track_spam(identifier)
        logger.info("Rejected message from %s: %s", identifier, "; ".join(verdict.errors))

        if spam.should_block:
            raise BlockedError(
                moderation.blocked_spam_message(spam.block_duration),
                reset_at=time.time() + spam.block_duration,
            )

        entry = limiters.chat.get_entry(identifier)
        return PlainTextResponse(
            _moderation_reply(
                verdict.reason,
                entry.spam_count if entry is not None else 1,
                settings.max_message_length,
            )
        )

    # --------------------------------------------------------------
    # Retrieval
    # --------------------------------------------------------------

    try:
        results = await engine.search(
            latest.content,
            k=req.options.max_results,
            client_identifier=identifier,
        )
    except DocumentStoreError:
        logger.exception("Document store unavailable; answering without context")
        results = []

    messages = [LLMMessage(role="system", content=build_chat_prompt(format_context(results), req.options.prompt_type))]
    messages.extend(
        LLMMessage(role=m.role, content=m.content)
        for m in req.messages[-settings.chat_max_history_length:]
    )

    overrides = ChatOverrides(
        model=req.options.model,
        max_tokens=req.options.max_tokens,
        temperature=req.options.temperature,
    )

    # --------------------------------------------------------------
    # Generation
    # --------------------------------------------------------------

    if not req.options.stream:
        sources = _unique_sources(results)
        try:
            result = await chat_manager.generate_response(messages, overrides)
        except ProviderError as exc:
            logger.error("Chat generation failed on every provider: %s", exc)
            return ChatResponse(answer=moderation.ERROR_GENERIC, sources=sources)

        return ChatResponse(
            answer=result.content,
            sources=sources,
            provider=result.provider,
            model=result.model,
        )

    return StreamingResponse(
        _degrading_stream(chat_manager.generate_streaming(messages, overrides)),
        media_type="text/plain; charset=utf-8",
    )
