"""
Chat Completion Providers

Thin async adapters over chat-completion APIs. Mistral and Groq both expose
an OpenAI-compatible ``/chat/completions`` endpoint, so a single HTTP
implementation serves both; the provider kind only selects defaults such as
the temperature ceiling.

Providers perform no retries and no timeouts of their own. Failover and
deadlines belong to ``ChatProviderManager``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Literal, Optional, Protocol, Sequence, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import BackendUnavailableError, NoContentError, classify_provider_error

logger = logging.getLogger("rag.llm")


class ProviderKind(str, Enum):
    MISTRAL = "mistral"
    GROQ = "groq"
    MOCK = "mock"


DEFAULT_MAX_TEMPERATURE = {
    ProviderKind.MISTRAL: 1.5,
    ProviderKind.GROQ: 2.0,
    ProviderKind.MOCK: 2.0,
}


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable registration data for one chat provider."""

    name: str
    kind: ProviderKind
    model: str
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout_seconds: float = 5.0
    max_temperature: Optional[float] = None

    @property
    def temperature_ceiling(self) -> float:
        if self.max_temperature is not None:
            return self.max_temperature
        return DEFAULT_MAX_TEMPERATURE[self.kind]


# ---------------------------------------------------------------------
# Message / result models
# ---------------------------------------------------------------------

class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str

    model_config = ConfigDict(extra="forbid")


class ChatOverrides(BaseModel):
    """Per-call generation options. ``None`` means "provider default"."""

    model: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, gt=0)
    temperature: Optional[float] = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    def without_model(self) -> "ChatOverrides":
        return self.model_copy(update={"model": None})


class ChatUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResult(BaseModel):
    content: str
    provider: str
    model: str
    usage: Optional[ChatUsage] = None


class ChatProvider(Protocol):
    """Anything the manager can route chat requests to."""

    config: ProviderConfig

    @property
    def name(self) -> str:
        ...

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides] = None,
    ) -> ChatResult:
        ...

    def stream(
        self,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides] = None,
    ) -> AsyncIterator[str]:
        ...


# ---------------------------------------------------------------------
# Shared parameter resolution
# ---------------------------------------------------------------------

def resolve_generation_params(
    config: ProviderConfig,
    overrides: Optional[ChatOverrides],
) -> Tuple[str, int, float]:
    """
    Merge per-call overrides with provider defaults.

    A temperature outside ``[0, temperature_ceiling]`` is replaced by the
    provider default.
    """
    overrides = overrides or ChatOverrides()

    model = overrides.model or config.model
    max_tokens = overrides.max_tokens or config.max_tokens
    temperature = config.temperature if overrides.temperature is None else overrides.temperature

    ceiling = config.temperature_ceiling
    if temperature < 0 or temperature > ceiling:
        logger.warning(
            "Temperature %s outside [0, %s] for %s; using default %s",
            temperature,
            ceiling,
            config.name,
            config.temperature,
        )
        temperature = config.temperature

    return model, max_tokens, temperature


# ---------------------------------------------------------------------
# OpenAI-compatible HTTP provider (Mistral, Groq)
# ---------------------------------------------------------------------

class OpenAICompatibleChatProvider:
    """
    Chat provider speaking the OpenAI chat-completions wire format.

    Parameters
    ----------
    config : ProviderConfig
        Registration data (name, kind, model, defaults).
    api_key : str
        Bearer token.
    base_url : str
        API root; ``/chat/completions`` is appended.
    transport : Optional[httpx.AsyncBaseTransport]
        Custom transport, used by tests to avoid real network calls.
    """

    def __init__(
        self,
        config: ProviderConfig,
        api_key: str,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.url = base_url.rstrip("/") + "/chat/completions"
        self._api_key = api_key
        self._transport = transport

    @property
    def name(self) -> str:
        return self.config.name

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides] = None,
    ) -> ChatResult:
        payload, model = self._payload(messages, overrides, stream=False)

        try:
            async with httpx.AsyncClient(timeout=None, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=self._headers())
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise classify_provider_error(exc, self.name, model) from exc

        try:
            choice = data["choices"][0]
            content = choice["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise BackendUnavailableError(
                f"{self.name} returned a malformed completion", self.name
            ) from exc

        if not content:
            raise NoContentError("No response content received", self.name)

        usage = data.get("usage")
        return ChatResult(
            content=content,
            provider=self.name,
            model=data.get("model") or model,
            usage=ChatUsage(**usage) if isinstance(usage, dict) else None,
        )

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides] = None,
    ) -> AsyncIterator[str]:
        """
        Yield content deltas from a server-sent-events completion stream.

        Empty deltas are skipped; the stream ends at ``data: [DONE]`` or when
        the connection closes.
        """
        payload, model = self._payload(messages, overrides, stream=True)

        try:
            async with httpx.AsyncClient(timeout=None, transport=self._transport) as client:
                async with client.stream(
                    "POST", self.url, json=payload, headers=self._headers()
                ) as response:
                    if response.is_error:
                        await response.aread()
                        response.raise_for_status()

                    async for line in response.aiter_lines():
                        delta = self._parse_sse_line(line)
                        if delta is None:
                            continue
                        if delta is _DONE:
                            break
                        yield delta
        except httpx.HTTPError as exc:
            raise classify_provider_error(exc, self.name, model) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _payload(
        self,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides],
        stream: bool,
    ) -> Tuple[dict, str]:
        model, max_tokens, temperature = resolve_generation_params(self.config, overrides)
        payload = {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }
        return payload, model

    def _parse_sse_line(self, line: str):
        line = line.strip()
        if not line.startswith("data:"):
            return None

        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return _DONE

        try:
            event = json.loads(data)
            delta = event["choices"][0].get("delta") or {}
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            raise BackendUnavailableError(
                f"{self.name} sent a malformed stream event", self.name
            ) from exc

        content = delta.get("content")
        return content or None


_DONE = object()


# ---------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------

class MockChatProvider:
    """
    Offline provider that echoes canned text.

    Always registered so the service can answer without any API keys.
    """

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        reply: str = "This is a mock response. Configure an API key to enable a real model.",
    ) -> None:
        self.config = config or ProviderConfig(
            name="mock", kind=ProviderKind.MOCK, model="mock-model"
        )
        self.reply = reply

    @property
    def name(self) -> str:
        return self.config.name

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides] = None,
    ) -> ChatResult:
        model, _, _ = resolve_generation_params(self.config, overrides)
        return ChatResult(content=self.reply, provider=self.name, model=model)

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides] = None,
    ) -> AsyncIterator[str]:
        words: List[str] = self.reply.split(" ")
        for index, word in enumerate(words):
            yield word if index == len(words) - 1 else word + " "
