"""
Unit Tests for the OpenAI chat provider

The AsyncOpenAI client is replaced by small stand-ins so no network is used.
"""

from types import SimpleNamespace

import httpx
import openai
import pytest

from socratic_theorem_tutor import llm_client
from socratic_theorem_tutor.config import TutorSettings
from socratic_theorem_tutor.errors import GenerationFailure
from socratic_theorem_tutor.llm_client import (
    OpenAIChatProvider,
    SamplingParams,
    to_generation_failure,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def chunk(content=None, finish_reason=None):
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=SimpleNamespace(content=content), finish_reason=finish_reason)]
    )


class FakeStream:
    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.chunks:
            raise StopAsyncIteration
        return self.chunks.pop(0)

    async def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.result


def provider_with(completions):
    provider = OpenAIChatProvider(api_key="test-key", model="gpt-4o-mini")
    provider._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return provider


MESSAGES = [{"role": "user", "content": "什么是勾股定理"}]


class TestChat:

    @pytest.mark.asyncio
    async def test_returns_first_choice_and_passes_sampling(self):
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="想一想"))])
        completions = FakeCompletions(result=response)

        text = await provider_with(completions).chat(MESSAGES, SamplingParams(temperature=0.3, max_tokens=99))

        assert text == "想一想"
        assert completions.kwargs["temperature"] == 0.3
        assert completions.kwargs["max_tokens"] == 99
        assert completions.kwargs["messages"] == MESSAGES

    @pytest.mark.asyncio
    async def test_no_choices_is_failure(self):
        completions = FakeCompletions(result=SimpleNamespace(choices=[]))
        with pytest.raises(GenerationFailure):
            await provider_with(completions).chat(MESSAGES, SamplingParams())

    @pytest.mark.asyncio
    async def test_provider_errors_are_mapped(self):
        completions = FakeCompletions(error=openai.APIConnectionError(request=REQUEST))

        with pytest.raises(GenerationFailure) as exc_info:
            await provider_with(completions).chat(MESSAGES, SamplingParams())

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_missing_key_is_failure(self):
        with pytest.raises(GenerationFailure, match="OPENAI_API_KEY"):
            await OpenAIChatProvider(api_key=None).chat(MESSAGES, SamplingParams())

    def test_bad_request_is_not_retryable(self):
        error = openai.BadRequestError(
            "bad", response=httpx.Response(400, request=REQUEST), body=None
        )
        failure = to_generation_failure(error)

        assert not failure.retryable
        assert failure.status_code == 400

    def test_caller_key_client_is_reused(self, monkeypatch):
        built = []

        class RecordingClient:
            def __init__(self, **kwargs):
                built.append(kwargs)

        monkeypatch.setattr(llm_client, "AsyncOpenAI", RecordingClient)
        provider = OpenAIChatProvider(api_key=None)

        first = provider._get_client("user-key")

        assert provider._get_client("user-key") is first
        assert [kwargs["api_key"] for kwargs in built] == ["user-key"]

    def test_from_settings(self):
        provider = OpenAIChatProvider.from_settings(
            TutorSettings(openai_api_key="k", model="qwen-vl-max", llm_timeout=5.0)
        )
        assert provider.model == "qwen-vl-max"
        assert provider.timeout == 5.0


class TestChatStream:

    @pytest.mark.asyncio
    async def test_yields_fragments_in_order(self):
        stream = FakeStream([chunk("勾股"), chunk(None), chunk("定理", finish_reason="stop")])
        provider = provider_with(FakeCompletions(result=stream))

        fragments = [f async for f in provider.chat_stream(MESSAGES, SamplingParams())]

        assert fragments == ["勾股", "定理"]
        assert stream.closed

    @pytest.mark.asyncio
    async def test_missing_finish_reason_is_failure(self):
        stream = FakeStream([chunk("半句")])
        provider = provider_with(FakeCompletions(result=stream))

        with pytest.raises(GenerationFailure, match="completion signal"):
            async for _ in provider.chat_stream(MESSAGES, SamplingParams()):
                pass
        assert stream.closed

    @pytest.mark.asyncio
    async def test_early_close_closes_http_stream(self):
        stream = FakeStream([chunk("一"), chunk("二"), chunk("三", finish_reason="stop")])
        provider = provider_with(FakeCompletions(result=stream))

        generator = provider.chat_stream(MESSAGES, SamplingParams())
        assert await generator.__anext__() == "一"
        await generator.aclose()

        assert stream.closed
