"""Abstract LLM client with Ollama primary and paid API fallback.

Defines a protocol-based interface for LLM communication with three
concrete implementations:

- :class:`OllamaLLMClient`: wraps the Ollama async client (primary, local)
- :class:`PaidLLMClient`: wraps Anthropic or OpenAI SDKs (fallback)
- :class:`FallbackLLMClient`: composite: tries Ollama first, falls back to paid API

Voice notes are turned into text by :class:`OpenAITranscriber` before they
reach the extraction prompt.

Every LLM call is logged to the ``llm_calls`` table.
"""

from __future__ import annotations

import io
import logging
import time
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

from finlog.config import settings

logger = logging.getLogger(__name__)


# ── Data models ───────────────────────────────────────────────────────────────


class LLMResponse(BaseModel):
    """Structured response from an LLM call."""

    content: str = ""
    input_tokens: int | None = None
    output_tokens: int | None = None
    latency_ms: int | None = None
    provider: str = ""
    model: str = ""

    @property
    def is_fallback(self) -> bool:
        return self.provider.endswith("(fallback)")


class ChatMessage(BaseModel):
    """A single message in a chat conversation."""

    role: str  # "system", "user", "assistant"
    content: str = ""


# ── Protocols ─────────────────────────────────────────────────────────────────


@runtime_checkable
class LLMClient(Protocol):
    """Abstract interface for LLM communication."""

    async def chat(
        self,
        messages: list[ChatMessage],
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send a chat completion request to the LLM.

        Args:
            messages: Conversation history as a list of chat messages.
            json_mode: Ask the provider to constrain output to JSON, where
                the provider supports it.

        Returns:
            Structured LLM response.
        """
        ...


@runtime_checkable
class Transcriber(Protocol):
    """Turns an audio clip into text."""

    async def transcribe(self, data: bytes, mime_type: str) -> str:
        ...


# ── Ollama implementation ─────────────────────────────────────────────────────


class OllamaLLMClient:
    """LLM client wrapping the Ollama async API.

    Uses ``settings.ollama_base_url`` and ``settings.ollama_model``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
    ) -> None:
        self._base_url = base_url or settings.ollama_base_url
        self._model = model or settings.ollama_model

    async def chat(
        self,
        messages: list[ChatMessage],
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send a chat request to the Ollama server."""
        import ollama

        client = ollama.AsyncClient(host=self._base_url)

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _messages_to_dicts(messages),
        }
        if json_mode:
            kwargs["format"] = "json"

        start = time.monotonic()
        try:
            response = await client.chat(**kwargs)
        finally:
            latency_ms = int((time.monotonic() - start) * 1000)

        message = response.get("message", {})
        content = message.get("content", "") or ""

        return LLMResponse(
            content=content,
            input_tokens=response.get("prompt_eval_count"),
            output_tokens=response.get("eval_count"),
            latency_ms=latency_ms,
            provider="ollama",
            model=self._model,
        )


# ── Paid API implementation ──────────────────────────────────────────────────


class PaidLLMClient:
    """LLM client wrapping Anthropic or OpenAI SDKs.

    Provider is selected via ``settings.fallback_llm_provider``.
    """

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
    ) -> None:
        self._provider = provider or settings.fallback_llm_provider
        self._model = model or settings.fallback_llm_model

    async def chat(
        self,
        messages: list[ChatMessage],
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send a chat request to the paid API."""
        if self._provider == "anthropic":
            return await self._chat_anthropic(messages)
        elif self._provider == "openai":
            return await self._chat_openai(messages, json_mode)
        else:
            raise ValueError(f"Unknown LLM provider: {self._provider}")

    async def _chat_anthropic(self, messages: list[ChatMessage]) -> LLMResponse:
        """Send a request to the Anthropic API."""
        import anthropic

        client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)

        # Separate system message from conversation.
        system_text = ""
        api_messages: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role == "system":
                system_text = msg.content
            else:
                api_messages.append({"role": msg.role, "content": msg.content})

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": 1024,
            "messages": api_messages,
        }
        if system_text:
            kwargs["system"] = system_text

        start = time.monotonic()
        response = await client.messages.create(**kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)

        content = "".join(block.text for block in response.content if block.type == "text")

        return LLMResponse(
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=latency_ms,
            provider="anthropic",
            model=self._model,
        )

    async def _chat_openai(self, messages: list[ChatMessage], json_mode: bool) -> LLMResponse:
        """Send a request to the OpenAI API."""
        import openai

        client = openai.AsyncOpenAI(api_key=settings.openai_api_key)

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _messages_to_dicts(messages),
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        start = time.monotonic()
        response = await client.chat.completions.create(**kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)

        choice = response.choices[0]
        return LLMResponse(
            content=choice.message.content or "",
            input_tokens=response.usage.prompt_tokens if response.usage else None,
            output_tokens=response.usage.completion_tokens if response.usage else None,
            latency_ms=latency_ms,
            provider="openai",
            model=self._model,
        )


# ── Fallback composite client ────────────────────────────────────────────────


class FallbackLLMClient:
    """Composite client: tries local Ollama first, falls back to paid API.

    On Ollama failure (connection error, timeout, malformed response), the
    request is retried via the paid API.
    """

    def __init__(
        self,
        primary: LLMClient | None = None,
        fallback: LLMClient | None = None,
    ) -> None:
        self._primary = primary or OllamaLLMClient()
        self._fallback = fallback or PaidLLMClient()

    async def chat(
        self,
        messages: list[ChatMessage],
        json_mode: bool = False,
    ) -> LLMResponse:
        """Try Ollama; on failure fall back to paid API."""
        try:
            response = await self._primary.chat(messages, json_mode)
            logger.debug(
                "Ollama responded in %dms (tokens: %s/%s)",
                response.latency_ms or 0,
                response.input_tokens,
                response.output_tokens,
            )
            return response

        except Exception as exc:
            fallback_reason = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "Ollama call failed (%s), falling back to paid API",
                fallback_reason,
            )

        try:
            response = await self._fallback.chat(messages, json_mode)
            # Tag the response so the caller knows it was a fallback.
            response.provider = f"{response.provider} (fallback)"
            logger.info(
                "Fallback API responded in %dms (reason: %s)",
                response.latency_ms or 0,
                fallback_reason,
            )
            return response

        except Exception as fallback_exc:
            logger.error("Fallback API also failed: %s", fallback_exc)
            raise


# ── Voice transcription ──────────────────────────────────────────────────────


_AUDIO_EXTENSIONS = {
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/wav": "wav",
    "audio/webm": "webm",
}


class OpenAITranscriber:
    """Transcribes voice notes with the OpenAI audio API."""

    def __init__(self, model: str | None = None) -> None:
        self._model = model or settings.transcription_model

    async def transcribe(self, data: bytes, mime_type: str) -> str:
        import openai

        client = openai.AsyncOpenAI(api_key=settings.openai_api_key)

        extension = _AUDIO_EXTENSIONS.get(mime_type.split(";")[0].strip(), "ogg")
        audio = io.BytesIO(data)
        audio.name = f"voice.{extension}"

        start = time.monotonic()
        result = await client.audio.transcriptions.create(
            model=self._model,
            file=audio,
            language="es",
        )
        logger.info(
            "Transcribed %d bytes of %s in %dms",
            len(data), mime_type, int((time.monotonic() - start) * 1000),
        )
        return result.text


# ── Helpers ───────────────────────────────────────────────────────────────────


def _messages_to_dicts(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Convert ChatMessage list to the plain-dict format Ollama and OpenAI use."""
    return [{"role": msg.role, "content": msg.content} for msg in messages]


def estimate_cost_usd(
    provider: str,
    model: str,
    input_tokens: int | None,
    output_tokens: int | None,
) -> Decimal | None:
    """Rough cost estimate for paid API calls.

    Pricing as of late 2025, update as needed.
    """
    if provider == "ollama":
        return Decimal("0")

    in_t = input_tokens or 0
    out_t = output_tokens or 0

    # Claude Haiku pricing (per 1M tokens).
    if "haiku" in model.lower():
        return Decimal(str(in_t * 0.25 / 1_000_000 + out_t * 1.25 / 1_000_000))

    # GPT-4o-mini pricing (per 1M tokens).
    if "gpt-4o-mini" in model.lower():
        return Decimal(str(in_t * 0.15 / 1_000_000 + out_t * 0.60 / 1_000_000))

    # Unknown model.
    return None
