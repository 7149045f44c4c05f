"""
Message Moderation

Lightweight checks applied to incoming chat messages before any retrieval
or model call is made:

- gibberish / too-short input
- over-long input
- case-insensitive duplicates of earlier user messages
- obvious automated clients (by user agent)

Plus the caller identity used by the rate limiters and the fixed reply texts
returned when a message is rejected.
"""

from __future__ import annotations

import math
import re
from typing import List, Mapping, NamedTuple, Optional, Sequence

GIBBERISH_PATTERNS = (
    re.compile(r"^[a-zA-Z0-9]{2,15}$"),
    re.compile(r"^[0-9]+[a-zA-Z]+[0-9]+$"),
    re.compile(r"^[a-zA-Z]+[0-9]+[a-zA-Z]+$"),
    re.compile(r"^[a-zA-Z]{1,3}[0-9]{1,3}[a-zA-Z]{1,3}$"),
)

ALLOWED_SHORT_WORDS = frozenset(
    {"hi", "hello", "hey", "ok", "yes", "no", "why", "how", "what", "when", "where", "who"}
)

BOT_USER_AGENT_PATTERN = re.compile(r"bot|crawler|spider|scraper|curl|wget", re.IGNORECASE)

DEFAULT_MAX_LENGTH = 1000
USER_AGENT_PREFIX_LENGTH = 50


# ---------------------------------------------------------------------
# Reply texts
# ---------------------------------------------------------------------

GIBBERISH_FIRST = (
    "Hello! I'm here to help answer your questions. I'd be happy to help if "
    "you could please ask me a specific question. What would you like to know?"
)
GIBBERISH_REPEATED = (
    "I notice you've sent several unclear messages. Please take a moment to "
    "ask me a clear question, and I'll be happy to provide you with helpful "
    "information."
)
MESSAGE_TOO_LONG = (
    "I'd love to help, but your message is quite long! Please keep your "
    "questions under {max_length} characters, or break longer questions into "
    "smaller parts."
)
DUPLICATE_MESSAGE = (
    "I see you've asked the same question again! If my previous answer wasn't "
    "what you were looking for, please try rephrasing your question."
)
BOT_ACCESS_DENIED = "Access denied."
NO_CONTENT = "No message content provided"
ERROR_GENERIC = "Sorry, I encountered an error. Please try again."


def blocked_spam_message(block_seconds: float) -> str:
    minutes = max(1, math.ceil(block_seconds / 60))
    return f"Too many invalid messages. You are blocked for {minutes} minutes."


def rate_limited_message(retry_after_seconds: int) -> str:
    return f"Rate limit exceeded. Please wait {retry_after_seconds} seconds before trying again."


# ---------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------

def is_gibberish(content: str) -> bool:
    trimmed = (content or "").strip()
    if len(trimmed) < 3:
        return trimmed.lower() not in ALLOWED_SHORT_WORDS

    if any(pattern.match(trimmed) for pattern in GIBBERISH_PATTERNS):
        return trimmed.lower() not in ALLOWED_SHORT_WORDS
    return False


def is_too_long(content: str, max_length: int = DEFAULT_MAX_LENGTH) -> bool:
    return len(content or "") > max_length


def is_duplicate(content: str, previous_messages: Sequence[str]) -> bool:
    current = (content or "").lower()
    return any(previous.lower() == current for previous in previous_messages)


class ValidationResult(NamedTuple):
    is_valid: bool
    errors: List[str]
    reason: Optional[str] = None


def validate_message(
    content: str,
    max_length: Optional[int] = DEFAULT_MAX_LENGTH,
    check_gibberish: bool = True,
    previous_messages: Optional[Sequence[str]] = None,
) -> ValidationResult:
    """
    Run every enabled check and collect the failures.

    ``reason`` names the first failed check (``empty``, ``gibberish``,
    ``too_long`` or ``duplicate``) so callers can pick a reply.
    """
    errors: List[str] = []
    reasons: List[str] = []

    if not content or not content.strip():
        errors.append("Message content is required")
        reasons.append("empty")

    if check_gibberish and content and content.strip() and is_gibberish(content):
        errors.append("Message appears to be gibberish")
        reasons.append("gibberish")

    if max_length and is_too_long(content, max_length):
        errors.append(f"Message exceeds maximum length of {max_length} characters")
        reasons.append("too_long")

    if previous_messages and is_duplicate(content, previous_messages):
        errors.append("Message is a duplicate of a previous message")
        reasons.append("duplicate")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        reason=reasons[0] if reasons else None,
    )


def is_bot_user_agent(user_agent: Optional[str]) -> bool:
    return bool(user_agent) and BOT_USER_AGENT_PATTERN.search(user_agent) is not None


# ---------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------

def extract_ip_address(headers: Mapping[str, str]) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return (headers.get("x-real-ip") or headers.get("cf-connecting-ip") or "unknown").strip()


def client_identifier(headers: Mapping[str, str]) -> str:
    """``<ip>:<first 50 chars of user agent>``, as used by every limiter."""
    user_agent = headers.get("user-agent") or "unknown"
    return f"{extract_ip_address(headers)}:{user_agent[:USER_AGENT_PREFIX_LENGTH]}"
