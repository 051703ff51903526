"""Tests for the LLM client abstraction layer.

Tests cover:
- OllamaLLMClient with a mocked Ollama async client (JSON mode)
- PaidLLMClient with mocked Anthropic and OpenAI SDKs
- FallbackLLMClient composite behavior (primary → fallback)
- OpenAITranscriber with a mocked audio API
- Cost estimation
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from finlog.agent.llm_client import (
    ChatMessage,
    FallbackLLMClient,
    LLMResponse,
    OllamaLLMClient,
    OpenAITranscriber,
    PaidLLMClient,
    _messages_to_dicts,
    estimate_cost_usd,
)

# ── ChatMessage / LLMResponse model tests ─────────────────────────────────────


def test_llm_response_defaults() -> None:
    resp = LLMResponse()
    assert resp.content == ""
    assert resp.input_tokens is None
    assert resp.provider == ""
    assert resp.is_fallback is False


def test_llm_response_is_fallback() -> None:
    resp = LLMResponse(provider="openai (fallback)")
    assert resp.is_fallback is True


def test_messages_to_dicts() -> None:
    messages = [
        ChatMessage(role="system", content="Sos un asistente."),
        ChatMessage(role="user", content="Gasté 2500"),
    ]
    assert _messages_to_dicts(messages) == [
        {"role": "system", "content": "Sos un asistente."},
        {"role": "user", "content": "Gasté 2500"},
    ]


# ── Cost estimation ───────────────────────────────────────────────────────────


def test_estimate_cost_ollama_is_zero() -> None:
    assert estimate_cost_usd("ollama", "qwen2.5", 100, 50) == Decimal("0")


def test_estimate_cost_gpt4o_mini() -> None:
    cost = estimate_cost_usd("openai", "gpt-4o-mini", 1000, 500)
    assert cost is not None
    assert cost > 0


def test_estimate_cost_haiku() -> None:
    cost = estimate_cost_usd("anthropic", "claude-3-5-haiku-latest", 1000, 500)
    assert cost is not None
    assert cost > 0


def test_estimate_cost_unknown_model() -> None:
    assert estimate_cost_usd("other", "unknown-model", 1000, 500) is None


# ── OllamaLLMClient tests ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_ollama_client_json_mode() -> None:
    """OllamaLLMClient should request JSON output and parse token counts."""
    mock_response = {
        "message": {"content": '{"type": "gasto"}'},
        "prompt_eval_count": 50,
        "eval_count": 20,
    }

    with patch("ollama.AsyncClient") as mock_ollama_cls:
        instance = AsyncMock()
        instance.chat = AsyncMock(return_value=mock_response)
        mock_ollama_cls.return_value = instance

        client = OllamaLLMClient(base_url="http://test:11434", model="test-model")
        result = await client.chat([ChatMessage(role="user", content="hi")], json_mode=True)

    kwargs = instance.chat.call_args.kwargs
    assert kwargs["format"] == "json"
    assert kwargs["model"] == "test-model"
    assert result.content == '{"type": "gasto"}'
    assert result.input_tokens == 50
    assert result.output_tokens == 20
    assert result.provider == "ollama"
    assert result.latency_ms is not None


@pytest.mark.asyncio
async def test_ollama_client_plain_mode() -> None:
    with patch("ollama.AsyncClient") as mock_ollama_cls:
        instance = AsyncMock()
        instance.chat = AsyncMock(return_value={"message": {"content": None}})
        mock_ollama_cls.return_value = instance

        client = OllamaLLMClient(base_url="http://test:11434", model="test-model")
        result = await client.chat([ChatMessage(role="user", content="hi")])

    assert "format" not in instance.chat.call_args.kwargs
    assert result.content == ""


# ── PaidLLMClient tests ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_paid_client_anthropic_system_prompt() -> None:
    """The system message goes in the ``system`` argument, not the list."""
    mock_block = MagicMock()
    mock_block.type = "text"
    mock_block.text = '{"type": "ingreso"}'

    mock_response = MagicMock()
    mock_response.content = [mock_block]
    mock_response.usage.input_tokens = 80
    mock_response.usage.output_tokens = 15

    with patch("anthropic.AsyncAnthropic") as mock_anthropic_cls:
        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=mock_response)
        mock_anthropic_cls.return_value = mock_client

        client = PaidLLMClient(provider="anthropic", model="claude-3-5-haiku-latest")
        messages = [
            ChatMessage(role="system", content="Extraé el movimiento."),
            ChatMessage(role="user", content="Cobré el sueldo"),
        ]
        result = await client.chat(messages, json_mode=True)

    kwargs = mock_client.messages.create.call_args.kwargs
    assert kwargs["system"] == "Extraé el movimiento."
    assert kwargs["messages"] == [{"role": "user", "content": "Cobré el sueldo"}]
    assert result.content == '{"type": "ingreso"}'
    assert result.input_tokens == 80
    assert result.provider == "anthropic"


@pytest.mark.asyncio
async def test_paid_client_openai_json_mode() -> None:
    mock_choice = MagicMock()
    mock_choice.message.content = '{"type": "gasto"}'

    mock_response = MagicMock()
    mock_response.choices = [mock_choice]
    mock_response.usage.prompt_tokens = 60
    mock_response.usage.completion_tokens = 10

    with patch("openai.AsyncOpenAI") as mock_openai_cls:
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)
        mock_openai_cls.return_value = mock_client

        client = PaidLLMClient(provider="openai", model="gpt-4o-mini")
        result = await client.chat([ChatMessage(role="user", content="hola")], json_mode=True)

    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert result.content == '{"type": "gasto"}'
    assert result.input_tokens == 60
    assert result.output_tokens == 10
    assert result.provider == "openai"


@pytest.mark.asyncio
async def test_paid_client_unknown_provider_raises() -> None:
    client = PaidLLMClient(provider="unknown", model="test")

    with pytest.raises(ValueError, match="Unknown LLM provider"):
        await client.chat([ChatMessage(role="user", content="hi")])


# ── FallbackLLMClient tests ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fallback_uses_primary_on_success() -> None:
    primary = AsyncMock()
    primary.chat = AsyncMock(
        return_value=LLMResponse(content="primary ok", provider="ollama", model="test")
    )
    fallback = AsyncMock()
    fallback.chat = AsyncMock()

    client = FallbackLLMClient(primary=primary, fallback=fallback)
    result = await client.chat([ChatMessage(role="user", content="hola")], json_mode=True)

    assert result.content == "primary ok"
    primary.chat.assert_called_once()
    assert primary.chat.call_args.args[1] is True
    fallback.chat.assert_not_called()


@pytest.mark.asyncio
async def test_fallback_uses_fallback_on_primary_failure() -> None:
    primary = AsyncMock()
    primary.chat = AsyncMock(side_effect=ConnectionError("Ollama down"))
    fallback = AsyncMock()
    fallback.chat = AsyncMock(
        return_value=LLMResponse(content="fallback ok", provider="openai", model="gpt-4o-mini")
    )

    client = FallbackLLMClient(primary=primary, fallback=fallback)
    result = await client.chat([ChatMessage(role="user", content="hola")])

    assert result.content == "fallback ok"
    assert result.provider == "openai (fallback)"
    assert result.is_fallback
    fallback.chat.assert_called_once()


@pytest.mark.asyncio
async def test_fallback_raises_when_both_fail() -> None:
    primary = AsyncMock()
    primary.chat = AsyncMock(side_effect=ConnectionError("Ollama down"))
    fallback = AsyncMock()
    fallback.chat = AsyncMock(side_effect=RuntimeError("API error"))

    client = FallbackLLMClient(primary=primary, fallback=fallback)

    with pytest.raises(RuntimeError, match="API error"):
        await client.chat([ChatMessage(role="user", content="hola")])


# ── OpenAITranscriber tests ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_transcriber_sends_named_file() -> None:
    with patch("openai.AsyncOpenAI") as mock_openai_cls:
        mock_client = AsyncMock()
        mock_client.audio.transcriptions.create = AsyncMock(
            return_value=MagicMock(text="gasté dos mil en el super")
        )
        mock_openai_cls.return_value = mock_client

        transcriber = OpenAITranscriber(model="whisper-1")
        text = await transcriber.transcribe(b"\x00\x01", "audio/ogg; codecs=opus")

    kwargs = mock_client.audio.transcriptions.create.call_args.kwargs
    assert text == "gasté dos mil en el super"
    assert kwargs["model"] == "whisper-1"
    assert kwargs["language"] == "es"
    assert kwargs["file"].name == "voice.ogg"
    assert kwargs["file"].read() == b"\x00\x01"
