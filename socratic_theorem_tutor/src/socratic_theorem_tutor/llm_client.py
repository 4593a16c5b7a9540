"""
Language-Model Provider

Thin wrapper over an OpenAI-compatible chat completions endpoint with a
blocking call and a streaming call. Provider errors are raised as
GenerationFailure; the stream only counts as complete when the provider
sends a finish_reason.
"""

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from socratic_theorem_tutor.config import TutorSettings
from socratic_theorem_tutor.errors import GenerationFailure

logger = logging.getLogger(__name__)

ModelMessages = List[Dict[str, Any]]

RETRYABLE_ERRORS = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


@dataclass(frozen=True)
class SamplingParams:
    temperature: float = 0.8
    max_tokens: int = 1500


def to_generation_failure(error: Exception) -> GenerationFailure:
    """Map an openai exception onto GenerationFailure."""
    return GenerationFailure(
        f"Language model call failed: {type(error).__name__}: {error}",
        retryable=isinstance(error, RETRYABLE_ERRORS),
        status_code=getattr(error, "status_code", None),
    )


class ChatProvider:
    """Interface for an external chat model."""

    async def chat(
        self,
        messages: ModelMessages,
        params: SamplingParams,
        api_key: Optional[str] = None
    ) -> str:
        raise NotImplementedError

    def chat_stream(
        self,
        messages: ModelMessages,
        params: SamplingParams,
        api_key: Optional[str] = None
    ) -> AsyncIterator[str]:
        raise NotImplementedError


class OpenAIChatProvider(ChatProvider):
    """Chat completions via openai.AsyncOpenAI."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        timeout: float = 60.0
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client: Optional[AsyncOpenAI] = None
        self._key_clients: Dict[str, AsyncOpenAI] = {}

    @classmethod
    def from_settings(cls, settings: TutorSettings) -> "OpenAIChatProvider":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.model,
            base_url=settings.openai_base_url,
            timeout=settings.llm_timeout,
        )

    def _get_client(self, api_key: Optional[str] = None) -> AsyncOpenAI:
        if api_key:
            if self._client is not None:
                return self._client.with_options(api_key=api_key)
            # Cached per caller key
            client = self._key_clients.get(api_key)
            if client is None:
                client = self._key_clients[api_key] = AsyncOpenAI(
                    api_key=api_key, base_url=self.base_url, timeout=self.timeout
                )
            return client

        if self._client is None:
            if not self.api_key:
                raise GenerationFailure("OPENAI_API_KEY not found in environment variables")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def chat(
        self,
        messages: ModelMessages,
        params: SamplingParams,
        api_key: Optional[str] = None
    ) -> str:
        client = self._get_client(api_key)
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=params.temperature,
                max_tokens=params.max_tokens
            )
        except openai.OpenAIError as e:
            raise to_generation_failure(e) from e

        if not response.choices:
            raise GenerationFailure("Language model returned no choices")
        return response.choices[0].message.content or ""

    async def chat_stream(
        self,
        messages: ModelMessages,
        params: SamplingParams,
        api_key: Optional[str] = None
    ) -> AsyncIterator[str]:
        """
        Yield text fragments in arrival order.

        The underlying HTTP stream is closed when the consumer stops early.
        Raises GenerationFailure if the stream ends without a finish_reason.
        """
        client = self._get_client(api_key)
        try:
            stream = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=params.temperature,
                max_tokens=params.max_tokens,
                stream=True
            )
        except openai.OpenAIError as e:
            raise to_generation_failure(e) from e

        finish_reason = None
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.delta and choice.delta.content:
                    yield choice.delta.content
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except openai.OpenAIError as e:
            raise to_generation_failure(e) from e
        finally:
            await stream.close()

        if finish_reason is None:
            raise GenerationFailure("Stream ended without a completion signal", retryable=True)
        if finish_reason == "length":
            logger.info(f"ℹ️ [LLM] Response hit max_tokens={params.max_tokens}")
