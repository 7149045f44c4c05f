"""
Chat Provider Manager Tests

Covers provider registration and switching, non-streaming and streaming
failover, the single-fallback rule, temperature validation, and error
classification of the HTTP provider.
"""

import asyncio
import json

import httpx
import pytest

from rag_chat_server.config import Settings
from rag_chat_server.core.errors import (
    AuthenticationFailedError,
    BackendUnavailableError,
    InvalidModelError,
    NoContentError,
    PayloadTooLargeError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
    ServerError,
    UnknownProviderError,
    classify_provider_error,
)
from rag_chat_server.llm.manager import ChatProviderManager, build_chat_provider_manager
from rag_chat_server.llm.providers import (
    ChatMessage,
    ChatOverrides,
    ChatResult,
    OpenAICompatibleChatProvider,
    ProviderConfig,
    ProviderKind,
    resolve_generation_params,
)

MESSAGES = [ChatMessage(role="user", content="What does it cost?")]


# ---------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------

class ScriptedProvider:
    """
    Provider whose behaviour is set per test.

    ``chunks`` are streamed in order; if ``fail_after`` is set, the stream
    raises ``error`` after that many chunks. ``delay`` postpones everything.
    """

    def __init__(self, name, chunks=None, error=None, fail_after=None, delay=0.0):
        self.config = ProviderConfig(
            name=name,
            kind=ProviderKind.MOCK,
            model=f"{name}-model",
            timeout_seconds=0.05,
        )
        self.chunks = list(chunks or [])
        self.error = error
        self.fail_after = fail_after
        self.delay = delay
        self.generate_calls = []
        self.stream_calls = []

    @property
    def name(self):
        return self.config.name

    async def generate(self, messages, overrides=None):
        self.generate_calls.append(overrides)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ChatResult(content="".join(self.chunks), provider=self.name, model=self.config.model)

    async def stream(self, messages, overrides=None):
        self.stream_calls.append(overrides)
        if self.delay:
            await asyncio.sleep(self.delay)
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                break
            yield chunk
        if self.error is not None:
            raise self.error


def make_manager(primary, fallback=None):
    manager = ChatProviderManager()
    manager.register_provider(primary)
    if fallback is not None:
        manager.register_provider(fallback)
        manager.set_fallback_provider(fallback.name)
    manager.set_current_provider(primary.name)
    return manager


async def collect(stream):
    return [chunk async for chunk in stream]


# ---------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------

class TestProviderSelection:
    """Tests for registration and explicit switching."""

    def test_status_lists_providers(self):
        manager = make_manager(ScriptedProvider("a"), ScriptedProvider("b"))

        status = manager.status()

        assert status.current == "a"
        assert status.fallback == "b"
        assert status.available == ["a", "b"]

    def test_switch_current_provider(self):
        manager = make_manager(ScriptedProvider("a"), ScriptedProvider("b"))

        manager.set_current_provider("b")

        assert manager.status().current == "b"
        assert manager.get_current_provider().name == "b"

    def test_unknown_provider_rejected(self):
        manager = make_manager(ScriptedProvider("a"))

        with pytest.raises(UnknownProviderError):
            manager.set_current_provider("nope")
        with pytest.raises(UnknownProviderError):
            manager.set_fallback_provider("nope")

    def test_fallback_equal_to_current_is_ignored(self):
        manager = make_manager(ScriptedProvider("a"), ScriptedProvider("b"))

        manager.set_current_provider("b")

        assert manager.get_fallback_provider() is None

    def test_build_without_keys_uses_mock(self):
        manager = build_chat_provider_manager(Settings(_env_file=None))

        status = manager.status()

        assert status.available == ["mock"]
        assert status.current == "mock"
        assert status.fallback is None

    def test_build_with_keys(self):
        settings = Settings(_env_file=None, mistral_api_key="m-key", groq_api_key="g-key")

        manager = build_chat_provider_manager(settings)
        status = manager.status()

        assert status.available == ["mistral", "groq", "mock"]
        assert status.current == "mistral"
        assert status.fallback == "groq"
        assert manager.get_current_provider().config.kind is ProviderKind.MISTRAL


# ---------------------------------------------------------------------
# Non-streaming
# ---------------------------------------------------------------------

class TestGenerateResponse:
    """Tests for non-streaming failover."""

    @pytest.mark.asyncio
    async def test_primary_answers(self):
        primary = ScriptedProvider("a", chunks=["hello"])
        fallback = ScriptedProvider("b", chunks=["fallback"])
        manager = make_manager(primary, fallback)

        result = await manager.generate_response(MESSAGES)

        assert result.content == "hello"
        assert fallback.generate_calls == []

    @pytest.mark.asyncio
    async def test_timeout_fails_over_without_model_override(self):
        primary = ScriptedProvider("a", chunks=["late"], delay=1.0)
        fallback = ScriptedProvider("b", chunks=["rescued"])
        manager = make_manager(primary, fallback)
        overrides = ChatOverrides(model="a-large", max_tokens=50, temperature=0.2)

        result = await manager.generate_response(MESSAGES, overrides)

        assert result.content == "rescued"
        (used,) = fallback.generate_calls
        assert used.model is None
        assert used.max_tokens == 50
        assert used.temperature == 0.2

    @pytest.mark.asyncio
    async def test_both_fail_raises_fallback_error(self):
        primary = ScriptedProvider("a", error=ServerError("down", "a"))
        fallback = ScriptedProvider("b", error=AuthenticationFailedError("bad key", "b"))
        manager = make_manager(primary, fallback)

        with pytest.raises(AuthenticationFailedError) as exc_info:
            await manager.generate_response(MESSAGES)

        assert isinstance(exc_info.value.__cause__, ServerError)
        assert len(fallback.generate_calls) == 1

    @pytest.mark.asyncio
    async def test_no_fallback_raises_timeout(self):
        manager = make_manager(ScriptedProvider("a", chunks=["x"], delay=1.0))

        with pytest.raises(ProviderTimeoutError):
            await manager.generate_response(MESSAGES)

    @pytest.mark.asyncio
    async def test_failover_does_not_switch_current(self):
        primary = ScriptedProvider("a", error=ServerError("down", "a"))
        fallback = ScriptedProvider("b", chunks=["ok"])
        manager = make_manager(primary, fallback)

        await manager.generate_response(MESSAGES)

        assert manager.status().current == "a"


# ---------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------

class TestGenerateStreaming:
    """Tests for streaming failover."""

    @pytest.mark.asyncio
    async def test_streams_primary_chunks(self):
        manager = make_manager(ScriptedProvider("a", chunks=["Hel", "lo"]), ScriptedProvider("b"))

        assert await collect(manager.generate_streaming(MESSAGES)) == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_zero_chunks_fails_over_once(self):
        primary = ScriptedProvider("a", chunks=[])
        fallback = ScriptedProvider("b", chunks=["from ", "fallback"])
        manager = make_manager(primary, fallback)

        chunks = await collect(manager.generate_streaming(MESSAGES))

        assert chunks == ["from ", "fallback"]
        assert len(primary.stream_calls) == 1
        assert len(fallback.stream_calls) == 1

    @pytest.mark.asyncio
    async def test_zero_chunks_everywhere_raises_no_content(self):
        primary = ScriptedProvider("a", chunks=[])
        fallback = ScriptedProvider("b", chunks=[])
        manager = make_manager(primary, fallback)

        with pytest.raises(NoContentError):
            await collect(manager.generate_streaming(MESSAGES))

        assert len(fallback.stream_calls) == 1

    @pytest.mark.asyncio
    async def test_error_after_partial_output_does_not_fail_over(self):
        primary = ScriptedProvider(
            "a",
            chunks=["partial ", "never"],
            fail_after=1,
            error=BackendUnavailableError("connection reset", "a"),
        )
        fallback = ScriptedProvider("b", chunks=["fallback"])
        manager = make_manager(primary, fallback)
        received = []

        with pytest.raises(BackendUnavailableError):
            async for chunk in manager.generate_streaming(MESSAGES):
                received.append(chunk)

        assert received == ["partial "]
        assert fallback.stream_calls == []

    @pytest.mark.asyncio
    async def test_slow_first_chunk_fails_over(self):
        primary = ScriptedProvider("a", chunks=["late"], delay=1.0)
        fallback = ScriptedProvider("b", chunks=["quick"])
        manager = make_manager(primary, fallback)

        chunks = await collect(
            manager.generate_streaming(MESSAGES, ChatOverrides(model="a-large", max_tokens=10))
        )

        assert chunks == ["quick"]
        (used,) = fallback.stream_calls
        assert used.model is None
        assert used.max_tokens == 10

    @pytest.mark.asyncio
    async def test_error_before_output_without_fallback(self):
        manager = make_manager(ScriptedProvider("a", error=ProviderRateLimitedError("slow down", "a")))

        with pytest.raises(ProviderRateLimitedError):
            await collect(manager.generate_streaming(MESSAGES))


# ---------------------------------------------------------------------
# Providers and classification
# ---------------------------------------------------------------------

def sse_body(*deltas, done=True):
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": d}}]})
        for d in deltas
    ]
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


def make_http_provider(handler, kind=ProviderKind.GROQ):
    return OpenAICompatibleChatProvider(
        ProviderConfig(name=kind.value, kind=kind, model=f"{kind.value}-model"),
        api_key="key",
        base_url="https://llm.test/v1",
        transport=httpx.MockTransport(handler),
    )


class TestOpenAICompatibleProvider:
    """Tests for the HTTP chat provider."""

    @pytest.mark.asyncio
    async def test_generate_parses_completion(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "model": "groq-model",
                    "choices": [{"message": {"role": "assistant", "content": "Hi!"}}],
                    "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
                },
            )

        provider = make_http_provider(handler)

        result = await provider.generate(MESSAGES, ChatOverrides(max_tokens=20))

        assert result.content == "Hi!"
        assert result.usage.total_tokens == 5
        assert seen[0]["max_tokens"] == 20
        assert seen[0]["stream"] is False

    @pytest.mark.asyncio
    async def test_empty_completion_is_no_content(self):
        provider = make_http_provider(
            lambda request: httpx.Response(200, json={"choices": [{"message": {"content": ""}}]})
        )

        with pytest.raises(NoContentError):
            await provider.generate(MESSAGES)

    @pytest.mark.asyncio
    async def test_stream_yields_deltas(self):
        provider = make_http_provider(
            lambda request: httpx.Response(200, content=sse_body("Hel", "", "lo"))
        )

        chunks = [chunk async for chunk in provider.stream(MESSAGES)]

        assert chunks == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_stream_http_error_is_classified(self):
        provider = make_http_provider(
            lambda request: httpx.Response(429, json={"message": "Rate limit exceeded"})
        )

        with pytest.raises(ProviderRateLimitedError):
            [chunk async for chunk in provider.stream(MESSAGES)]

    @pytest.mark.asyncio
    async def test_out_of_range_temperature_uses_default(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        provider = make_http_provider(handler, kind=ProviderKind.MISTRAL)

        await provider.generate(MESSAGES, ChatOverrides(temperature=1.8))

        assert seen[0]["temperature"] == 0.7


class TestTemperatureCeilings:
    """Tests for per-kind temperature limits."""

    def test_groq_allows_higher_temperature(self):
        config = ProviderConfig(name="groq", kind=ProviderKind.GROQ, model="m")

        _, _, temperature = resolve_generation_params(config, ChatOverrides(temperature=1.8))

        assert temperature == 1.8

    def test_negative_temperature_rejected(self):
        config = ProviderConfig(name="groq", kind=ProviderKind.GROQ, model="m", temperature=0.5)

        _, _, temperature = resolve_generation_params(config, ChatOverrides(temperature=-1))

        assert temperature == 0.5


class TestErrorClassification:
    """Tests for mapping raw failures onto the error taxonomy."""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("401 Unauthorized", AuthenticationFailedError),
            ("Request payload too large", PayloadTooLargeError),
            ("Invalid payload: missing field messages", BackendUnavailableError),
            ("429 Rate limit reached", ProviderRateLimitedError),
            ("500 Internal Server Error", ServerError),
            ("The model does not exist", InvalidModelError),
            ("connection refused", BackendUnavailableError),
        ],
    )
    def test_message_classification(self, message, expected):
        error = classify_provider_error(RuntimeError(message), "groq", "llama")

        assert type(error) is expected
        assert error.provider == "groq"

    def test_timeouts_are_distinct(self):
        error = classify_provider_error(asyncio.TimeoutError(), "groq")

        assert isinstance(error, ProviderTimeoutError)

    def test_classified_errors_pass_through(self):
        original = NoContentError("empty", "groq")

        assert classify_provider_error(original, "mistral") is original
