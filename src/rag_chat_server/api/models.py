"""
API Models

Pydantic request/response schemas for the HTTP surface. Domain models that
are already safe to expose (``SearchResult``, ``StoreStats``) are reused
as-is rather than mirrored here.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..retrieval.models import SearchResult


# ---------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------

class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    k: Optional[int] = Field(default=None, ge=1, le=50)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------

class ChatMessage(BaseModel):
    """One turn of the conversation as sent by the client."""

    role: Literal["user", "assistant"]
    content: str

    model_config = ConfigDict(extra="forbid")


class ChatOptions(BaseModel):
    prompt_type: Optional[str] = None
    max_results: Optional[int] = Field(default=None, ge=1, le=50)
    model: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, gt=0)
    temperature: Optional[float] = None
    stream: bool = True

    model_config = ConfigDict(extra="forbid")


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1)
    options: ChatOptions = Field(default_factory=ChatOptions)

    model_config = ConfigDict(extra="forbid")


class SourceLink(BaseModel):
    url: str
    title: str


class ChatResponse(BaseModel):
    """Non-streaming chat reply."""

    answer: str
    sources: List[SourceLink] = Field(default_factory=list)
    provider: Optional[str] = None
    model: Optional[str] = None


# ---------------------------------------------------------------------
# Rate limit / providers
# ---------------------------------------------------------------------

class RateLimitStatusResponse(BaseModel):
    allowed: bool
    remaining: int
    reset_at: float
    is_blocked: bool
    blocked_until: Optional[float] = None
    window_seconds: float
    max_requests: int
    time_until_reset: float
    time_until_unblock: float


class ProviderStatusResponse(BaseModel):
    current: str
    fallback: Optional[str] = None
    available: List[str]


class SetProviderRequest(BaseModel):
    name: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


__all__ = [
    "SearchRequest",
    "SearchResult",
    "ChatMessage",
    "ChatOptions",
    "ChatRequest",
    "ChatResponse",
    "SourceLink",
    "RateLimitStatusResponse",
    "ProviderStatusResponse",
    "SetProviderRequest",
]
