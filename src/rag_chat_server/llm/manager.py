"""
Chat Provider Manager

Routes chat requests to a named current provider and fails over to a named
fallback provider at most once.

Failover Rules
--------------
- Non-streaming: the call is raced against the provider's timeout. On
  timeout or error the fallback provider is tried once with its own model
  (a caller model override is dropped; max_tokens and temperature are kept).
- Streaming: only the first chunk is raced against the timeout. Once a
  chunk has been yielded the manager is committed to that provider, and a
  later error is raised after the partial output without failover. A stream
  that ends without yielding anything counts as ``NoContentError`` and fails
  over like any other error.
- When the fallback also fails, its classified error is raised, chained to
  the primary error.

Provider selection is explicit (``set_current_provider``); a failover never
changes the current provider.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, List, NamedTuple, Optional, Sequence

from ..core.errors import (
    NoContentError,
    ProviderError,
    ProviderTimeoutError,
    UnknownProviderError,
    classify_provider_error,
)
from .providers import (
    ChatMessage,
    ChatOverrides,
    ChatProvider,
    ChatResult,
    MockChatProvider,
    OpenAICompatibleChatProvider,
    ProviderConfig,
    ProviderKind,
)

logger = logging.getLogger("rag.llm")


class ProviderStatus(NamedTuple):
    current: str
    fallback: Optional[str]
    available: List[str]


class ChatProviderManager:
    """Named chat providers with primary/fallback failover."""

    def __init__(self) -> None:
        self._providers: Dict[str, ChatProvider] = {}
        self._current: Optional[str] = None
        self._fallback: Optional[str] = None

    # ------------------------------------------------------------------
    # Registration and selection
    # ------------------------------------------------------------------

    def register_provider(self, provider: ChatProvider) -> None:
        self._providers[provider.name] = provider
        if self._current is None:
            self._current = provider.name
        logger.info(
            "Registered chat provider %s (%s, model=%s)",
            provider.name,
            provider.config.kind.value,
            provider.config.model,
        )

    def set_current_provider(self, name: str) -> None:
        self._require(name)
        self._current = name
        logger.info("Current chat provider set to %s", name)

    def set_fallback_provider(self, name: Optional[str]) -> None:
        if name is not None:
            self._require(name)
        self._fallback = name
        logger.info("Fallback chat provider set to %s", name)

    def get_current_provider(self) -> ChatProvider:
        if self._current is None:
            raise UnknownProviderError("No chat provider registered")
        return self._providers[self._current]

    def get_fallback_provider(self) -> Optional[ChatProvider]:
        if self._fallback is None or self._fallback == self._current:
            return None
        return self._providers.get(self._fallback)

    def status(self) -> ProviderStatus:
        return ProviderStatus(
            current=self._current or "",
            fallback=self._fallback,
            available=list(self._providers),
        )

    def _require(self, name: str) -> ChatProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise UnknownProviderError(
                f"Unknown chat provider '{name}'. Available: {sorted(self._providers)}"
            ) from None

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def generate_response(
        self,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides] = None,
    ) -> ChatResult:
        """
        Generate a complete reply, failing over once on timeout or error.

        Raises
        ------
        ProviderError
            A classified error when every provider tried has failed.
        """
        provider = self.get_current_provider()

        try:
            return await self._generate_with_deadline(provider, messages, overrides)
        except Exception as exc:
            primary_error = _classify(exc, provider)
            fallback = self.get_fallback_provider()
            if fallback is None:
                _reraise(primary_error, exc)

            logger.warning(
                "Chat provider %s failed (%s); falling back to %s",
                provider.name,
                primary_error,
                fallback.name,
            )

        fallback_overrides = overrides.without_model() if overrides else None
        try:
            return await self._generate_with_deadline(fallback, messages, fallback_overrides)
        except Exception as exc:
            fallback_error = _classify(exc, fallback)
            logger.error("Fallback chat provider %s failed: %s", fallback.name, fallback_error)
            raise fallback_error from primary_error

    async def _generate_with_deadline(
        self,
        provider: ChatProvider,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides],
    ) -> ChatResult:
        timeout = provider.config.timeout_seconds
        try:
            return await asyncio.wait_for(provider.generate(messages, overrides), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                f"{provider.name} did not respond within {timeout}s", provider.name
            ) from exc

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def generate_streaming(
        self,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides] = None,
    ) -> AsyncIterator[str]:
        """
        Stream a reply, failing over once if nothing was yielded yet.

        Raises
        ------
        ProviderError
            A classified error when the stream fails before producing output
            on every provider tried, or when it fails after partial output.
        """
        provider = self.get_current_provider()
        has_yielded = False

        try:
            async for chunk in self._stream_with_deadline(provider, messages, overrides):
                has_yielded = True
                yield chunk
            return
        except Exception as exc:
            primary_error = _classify(exc, provider)
            if has_yielded:
                logger.error(
                    "Chat stream from %s failed after partial output: %s",
                    provider.name,
                    primary_error,
                )
                _reraise(primary_error, exc)

            fallback = self.get_fallback_provider()
            if fallback is None:
                _reraise(primary_error, exc)

            logger.warning(
                "Chat stream from %s failed before any output (%s); falling back to %s",
                provider.name,
                primary_error,
                fallback.name,
            )

        fallback_overrides = overrides.without_model() if overrides else None
        try:
            async for chunk in self._stream_with_deadline(fallback, messages, fallback_overrides):
                yield chunk
        except Exception as exc:
            fallback_error = _classify(exc, fallback)
            logger.error("Fallback chat stream from %s failed: %s", fallback.name, fallback_error)
            raise fallback_error from primary_error

    async def _stream_with_deadline(
        self,
        provider: ChatProvider,
        messages: Sequence[ChatMessage],
        overrides: Optional[ChatOverrides],
    ) -> AsyncIterator[str]:
        timeout = provider.config.timeout_seconds
        iterator = provider.stream(messages, overrides).__aiter__()

        try:
            try:
                first = await asyncio.wait_for(anext(iterator), timeout=timeout)
            except StopAsyncIteration:
                raise NoContentError("No response content received", provider.name) from None
            except asyncio.TimeoutError as exc:
                raise ProviderTimeoutError(
                    f"{provider.name} produced no output within {timeout}s", provider.name
                ) from exc

            yield first
            async for chunk in iterator:
                yield chunk
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()


def _classify(exc: BaseException, provider: ChatProvider) -> ProviderError:
    return classify_provider_error(exc, provider.name, provider.config.model)


def _reraise(error: ProviderError, original: BaseException) -> None:
    if error is original:
        raise error
    raise error from original


# ---------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------

def build_chat_provider_manager(settings, transport=None) -> ChatProviderManager:
    """
    Register every provider that has credentials, plus the mock provider.

    The configured primary becomes current when it is registered; otherwise
    the first registered provider is used.
    """
    manager = ChatProviderManager()

    if settings.mistral_api_key is not None:
        manager.register_provider(
            OpenAICompatibleChatProvider(
                ProviderConfig(
                    name="mistral",
                    kind=ProviderKind.MISTRAL,
                    model=settings.mistral_chat_model,
                    max_tokens=settings.chat_max_tokens,
                    temperature=settings.chat_temperature,
                    timeout_seconds=settings.llm_timeout_seconds,
                    max_temperature=settings.mistral_max_temperature,
                ),
                api_key=settings.mistral_api_key.get_secret_value(),
                base_url=settings.mistral_base_url,
                transport=transport,
            )
        )

    if settings.groq_api_key is not None:
        manager.register_provider(
            OpenAICompatibleChatProvider(
                ProviderConfig(
                    name="groq",
                    kind=ProviderKind.GROQ,
                    model=settings.groq_chat_model,
                    max_tokens=settings.chat_max_tokens,
                    temperature=settings.chat_temperature,
                    timeout_seconds=settings.llm_timeout_seconds,
                    max_temperature=settings.groq_max_temperature,
                ),
                api_key=settings.groq_api_key.get_secret_value(),
                base_url=settings.groq_base_url,
                transport=transport,
            )
        )

    manager.register_provider(
        MockChatProvider(
            ProviderConfig(
                name="mock",
                kind=ProviderKind.MOCK,
                model="mock-model",
                max_tokens=settings.chat_max_tokens,
                temperature=settings.chat_temperature,
                timeout_seconds=settings.llm_timeout_seconds,
            )
        )
    )

    available = manager.status().available
    if settings.llm_primary_provider in available:
        manager.set_current_provider(settings.llm_primary_provider)
    else:
        logger.warning(
            "Primary chat provider %s is not configured; using %s",
            settings.llm_primary_provider,
            manager.status().current,
        )

    if settings.llm_fallback_provider in available:
        manager.set_fallback_provider(settings.llm_fallback_provider)

    return manager
