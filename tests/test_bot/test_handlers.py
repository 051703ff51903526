"""Tests for Telegram bot handlers.

Uses unittest.mock to simulate aiogram Message / CallbackQuery objects, the
chat transport and DB sessions, verifying that handlers produce the
expected replies and wire through the orchestrator correctly.
"""

from __future__ import annotations

import datetime as dt
import io
import re
from decimal import Decimal
from types import MappingProxyType
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from finlog.agent import set_orchestrator
from finlog.agent.extraction import VoiceNote
from finlog.agent.llm_client import LLMResponse
from finlog.agent.orchestrator import (
    CONFIG_ERROR_REPLY,
    Orchestrator,
    OrchestratorResult,
    confirmation_choices,
)
from finlog.agent.state import PendingStore, TTLCache
from finlog.bot.handlers import (
    _LS_RE,
    GENERIC_ERROR_REPLY,
    HELP_TEXT,
    WELCOME_TEXT,
    _guarded,
    cmd_accounts,
    cmd_balance,
    cmd_categories,
    cmd_help,
    cmd_list_subcategories,
    cmd_start,
    cmd_subcategories,
    handle_callback,
    handle_text,
    handle_voice,
)
from finlog.errors import ConfigError
from finlog.ledger.records import Movement, MovementKind, Taxonomy

CHAT_ID = 555
MESSAGE_DATE = dt.datetime(2024, 3, 10, 15, 0, tzinfo=dt.timezone.utc)

TAXONOMY = Taxonomy(
    accounts=frozenset({"Visa", "Banco"}),
    expense_categories=MappingProxyType({"Educación": ("Educación > Cursos",)}),
    income_categories=MappingProxyType({"Trabajo": ("Trabajo > Sueldo",)}),
)

# ── Helpers ───────────────────────────────────────────────────────────────────


def _make_message(text: str | None = "", chat_id: int = CHAT_ID) -> MagicMock:
    """Create a minimal mock of an aiogram ``Message``."""
    msg = MagicMock()
    msg.text = text
    msg.chat.id = chat_id
    msg.date = MESSAGE_DATE
    return msg


def _make_callback_query(data: str | None = "confirm:abc") -> MagicMock:
    """Create a minimal mock of an aiogram ``CallbackQuery``."""
    cq = MagicMock()
    cq.id = "cb-1"
    cq.data = data
    cq.message.chat.id = CHAT_ID
    cq.message.message_id = 77
    return cq


def _make_transport() -> AsyncMock:
    transport = AsyncMock()
    transport.send_text = AsyncMock(return_value=1)
    transport.send_choices = AsyncMock(return_value=2)
    return transport


def _make_session() -> AsyncMock:
    return AsyncMock()


def _command(name: str, args: str | None = None) -> MagicMock:
    command = MagicMock()
    command.command = name
    command.args = args
    return command


# ── Static commands ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cmd_start_sends_welcome() -> None:
    transport = _make_transport()
    await cmd_start(_make_message("/start"), transport)
    transport.send_text.assert_awaited_once_with(CHAT_ID, WELCOME_TEXT)


@pytest.mark.asyncio
async def test_cmd_help_lists_commands() -> None:
    transport = _make_transport()
    await cmd_help(_make_message("/ayuda"), transport)

    transport.send_text.assert_awaited_once_with(CHAT_ID, HELP_TEXT)
    for command in ("/cuentas", "/saldo", "/subcategorias", "/categorias_gastos"):
        assert command in HELP_TEXT


# ── Taxonomy commands ─────────────────────────────────────────────────────────


class TestTaxonomyCommands:
    @pytest.mark.asyncio
    async def test_accounts(self) -> None:
        transport = _make_transport()
        with patch(
            "finlog.bot.handlers.load_taxonomy",
            new_callable=AsyncMock,
            return_value=TAXONOMY,
        ):
            await cmd_accounts(_make_message("/cuentas"), _make_session(), transport)

        text = transport.send_text.call_args.args[1]
        assert text.index("Banco") < text.index("Visa")

    @pytest.mark.asyncio
    async def test_accounts_config_error(self) -> None:
        transport = _make_transport()
        with (
            patch(
                "finlog.bot.handlers.load_taxonomy",
                new_callable=AsyncMock,
                side_effect=ConfigError("missing"),
            ),
            patch("finlog.bot.handlers.error_sink.record", new_callable=AsyncMock) as mock_record,
        ):
            await cmd_accounts(_make_message("/cuentas"), _make_session(), transport)

        transport.send_text.assert_awaited_once_with(CHAT_ID, CONFIG_ERROR_REPLY)
        assert mock_record.call_args.args[0] == "load_taxonomy"

    @pytest.mark.asyncio
    async def test_expense_categories(self) -> None:
        transport = _make_transport()
        with patch(
            "finlog.bot.handlers.load_taxonomy",
            new_callable=AsyncMock,
            return_value=TAXONOMY,
        ):
            await cmd_categories(
                _make_message("/categorias_gastos"),
                _command("categorias_gastos"),
                _make_session(),
                transport,
            )

        text = transport.send_text.call_args.args[1]
        assert "Categorías de gastos" in text
        assert "Educación" in text
        assert "Trabajo" not in text

    @pytest.mark.asyncio
    async def test_empty_investment_categories(self) -> None:
        transport = _make_transport()
        with patch(
            "finlog.bot.handlers.load_taxonomy",
            new_callable=AsyncMock,
            return_value=TAXONOMY,
        ):
            await cmd_categories(
                _make_message("/categorias_inversiones"),
                _command("categorias_inversiones"),
                _make_session(),
                transport,
            )

        assert "No hay categorías configuradas" in transport.send_text.call_args.args[1]

    @pytest.mark.asyncio
    async def test_subcategories_index(self) -> None:
        transport = _make_transport()
        with patch(
            "finlog.bot.handlers.load_taxonomy",
            new_callable=AsyncMock,
            return_value=TAXONOMY,
        ):
            await cmd_subcategories(
                _make_message("/subcategorias"), _command("subcategorias"), _make_session(), transport,
            )

        text = transport.send_text.call_args.args[1]
        assert "/ls_Educacion" in text
        assert "/ls_Trabajo" in text

    @pytest.mark.asyncio
    async def test_subcategories_search(self) -> None:
        transport = _make_transport()
        with patch(
            "finlog.bot.handlers.load_taxonomy",
            new_callable=AsyncMock,
            return_value=TAXONOMY,
        ):
            await cmd_subcategories(
                _make_message("/subcategorias educacion"),
                _command("subcategorias", "educacion"),
                _make_session(),
                transport,
            )

        text = transport.send_text.call_args.args[1]
        assert "Subcategorías de Educación" in text
        assert "Educación &gt; Cursos" in text

    @pytest.mark.asyncio
    async def test_subcategories_not_found(self) -> None:
        transport = _make_transport()
        with patch(
            "finlog.bot.handlers.load_taxonomy",
            new_callable=AsyncMock,
            return_value=TAXONOMY,
        ):
            await cmd_subcategories(
                _make_message("/subcategorias hogar"),
                _command("subcategorias", "hogar"),
                _make_session(),
                transport,
            )

        assert "no encontrada" in transport.send_text.call_args.args[1]

    @pytest.mark.asyncio
    async def test_ls_link(self) -> None:
        transport = _make_transport()
        match = _LS_RE.match("/ls_Educacion")
        assert match is not None
        with patch(
            "finlog.bot.handlers.load_taxonomy",
            new_callable=AsyncMock,
            return_value=TAXONOMY,
        ):
            await cmd_list_subcategories(
                _make_message("/ls_Educacion"), match, _make_session(), transport,
            )

        assert "Subcategorías de Educación" in transport.send_text.call_args.args[1]


def test_ls_regex_handles_bot_suffix_and_spaces() -> None:
    match = _LS_RE.match("/ls_Salud_y_Bienestar@finlog_bot")
    assert match is not None
    assert match.group(1) == "Salud_y_Bienestar"
    assert re.match(_LS_RE, "/lista") is None


@pytest.mark.asyncio
async def test_cmd_balance() -> None:
    transport = _make_transport()
    with patch(
        "finlog.bot.handlers.get_account_balances",
        new_callable=AsyncMock,
        return_value={"Banco": Decimal("1500"), "Visa": Decimal("-500")},
    ):
        await cmd_balance(_make_message("/saldo"), _make_session(), transport)

    text = transport.send_text.call_args.args[1]
    assert "Banco: <b>$ 1.500,00</b>" in text
    assert "Visa: <b>-$ 500,00</b>" in text
    assert "Total: <b>$ 1.000,00</b>" in text


# ── Movements ─────────────────────────────────────────────────────────────────


class TestHandleText:
    @pytest.mark.asyncio
    async def test_prompt_is_sent_with_choices(self) -> None:
        transport = _make_transport()
        session = _make_session()
        result = OrchestratorResult(
            reply_text="¿Confirmás?",
            choices=confirmation_choices("abc"),
            llm_responses=[
                LLMResponse(provider="openai (fallback)", model="gpt-4o-mini", input_tokens=10, output_tokens=5),
            ],
        )

        with (
            patch(
                "finlog.bot.handlers.process_message",
                new_callable=AsyncMock,
                return_value=result,
            ) as mock_process,
            patch("finlog.bot.handlers.save_llm_call", new_callable=AsyncMock) as mock_save,
        ):
            await handle_text(_make_message("Gasté 2500"), session, transport)

        mock_process.assert_awaited_once_with(
            chat_id=CHAT_ID,
            content="Gasté 2500",
            session=session,
            message_date=MESSAGE_DATE,
        )
        transport.send_choices.assert_awaited_once_with(CHAT_ID, "¿Confirmás?", result.choices)
        transport.send_text.assert_not_called()

        kwargs = mock_save.call_args.kwargs
        assert kwargs["provider"] == "openai"
        assert kwargs["is_fallback"] is True
        assert kwargs["cost_usd"] is not None

    @pytest.mark.asyncio
    async def test_plain_reply(self) -> None:
        transport = _make_transport()
        with patch(
            "finlog.bot.handlers.process_message",
            new_callable=AsyncMock,
            return_value=OrchestratorResult(reply_text="⚠️ Monto inválido"),
        ):
            await handle_text(_make_message("gasté"), _make_session(), transport)

        transport.send_text.assert_awaited_once_with(CHAT_ID, "⚠️ Monto inválido")

    @pytest.mark.asyncio
    async def test_empty_text_is_ignored(self) -> None:
        transport = _make_transport()
        with patch("finlog.bot.handlers.process_message", new_callable=AsyncMock) as mock_process:
            await handle_text(_make_message(""), _make_session(), transport)

        mock_process.assert_not_called()
        transport.send_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_notifies_once(self) -> None:
        transport = _make_transport()
        session = _make_session()
        with (
            patch(
                "finlog.bot.handlers.process_message",
                new_callable=AsyncMock,
                side_effect=RuntimeError("boom"),
            ),
            patch("finlog.bot.handlers.error_sink.record", new_callable=AsyncMock) as mock_record,
        ):
            await handle_text(_make_message("Gasté 2500"), session, transport)

        session.rollback.assert_awaited_once()
        mock_record.assert_awaited_once()
        assert mock_record.call_args.args[0] == "handle_text"
        assert mock_record.call_args.kwargs["chat_id"] == CHAT_ID
        transport.send_text.assert_awaited_once_with(CHAT_ID, GENERIC_ERROR_REPLY)


@pytest.mark.asyncio
async def test_handle_voice_downloads_and_forwards() -> None:
    transport = _make_transport()
    message = _make_message(None)
    message.voice.mime_type = "audio/ogg"
    bot = AsyncMock()
    bot.download = AsyncMock(return_value=io.BytesIO(b"ogg-bytes"))

    with patch(
        "finlog.bot.handlers.process_message",
        new_callable=AsyncMock,
        return_value=OrchestratorResult(reply_text="ok"),
    ) as mock_process:
        await handle_voice(message, bot, _make_session(), transport)

    bot.download.assert_awaited_once_with(message.voice)
    content = mock_process.call_args.kwargs["content"]
    assert content == VoiceNote(data=b"ogg-bytes", mime_type="audio/ogg")
    transport.send_text.assert_awaited_once_with(CHAT_ID, "ok")


# ── Callbacks ─────────────────────────────────────────────────────────────────


class TestHandleCallback:
    @pytest.mark.asyncio
    async def test_edits_message_in_place(self) -> None:
        transport = _make_transport()
        session = _make_session()
        cq = _make_callback_query("confirm:abc")

        with patch(
            "finlog.bot.handlers.process_callback",
            new_callable=AsyncMock,
            return_value=OrchestratorResult(reply_text="✅ Registrado", edit_message=True),
        ) as mock_process:
            await handle_callback(cq, session, transport)

        transport.acknowledge.assert_awaited_once_with("cb-1")
        mock_process.assert_awaited_once_with(
            chat_id=CHAT_ID, callback_data="confirm:abc", session=session,
        )
        transport.edit_text.assert_awaited_once_with(CHAT_ID, 77, "✅ Registrado", None)

    @pytest.mark.asyncio
    async def test_edit_keeps_choices(self) -> None:
        transport = _make_transport()
        choices = confirmation_choices("abc")

        with patch(
            "finlog.bot.handlers.process_callback",
            new_callable=AsyncMock,
            return_value=OrchestratorResult(reply_text="⚠️", choices=choices, edit_message=True),
        ):
            await handle_callback(_make_callback_query(), _make_session(), transport)

        transport.edit_text.assert_awaited_once_with(CHAT_ID, 77, "⚠️", choices)

    @pytest.mark.asyncio
    async def test_new_message_when_not_editing(self) -> None:
        transport = _make_transport()
        with patch(
            "finlog.bot.handlers.process_callback",
            new_callable=AsyncMock,
            return_value=OrchestratorResult(reply_text="Acción desconocida."),
        ):
            await handle_callback(_make_callback_query("archive:abc"), _make_session(), transport)

        transport.send_text.assert_awaited_once_with(CHAT_ID, "Acción desconocida.")
        transport.edit_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_data_is_only_acknowledged(self) -> None:
        transport = _make_transport()
        with patch("finlog.bot.handlers.process_callback", new_callable=AsyncMock) as mock_process:
            await handle_callback(_make_callback_query(None), _make_session(), transport)

        transport.acknowledge.assert_awaited_once_with("cb-1")
        mock_process.assert_not_called()

    @pytest.mark.asyncio
    async def test_confirm_is_committed_before_reply_fails(self) -> None:
        """A Telegram failure after confirming must not undo the posted rows."""
        store = PendingStore(cache=TTLCache(), pending_ttl=600, edit_ttl=60)
        entry = store.create_pending(
            Movement(
                kind=MovementKind.EXPENSE,
                amount=Decimal("2500"),
                description="Nafta",
                category="Educación",
                subcategory="Educación > Cursos",
                account="Visa",
            ),
            MESSAGE_DATE,
        )
        set_orchestrator(Orchestrator(AsyncMock(), store=store, sink=AsyncMock()))

        calls: list[str] = []
        session = _make_session()
        session.commit = AsyncMock(side_effect=lambda: calls.append("commit"))
        session.rollback = AsyncMock(side_effect=lambda: calls.append("rollback"))
        transport = _make_transport()
        transport.edit_text = AsyncMock(side_effect=RuntimeError("telegram down"))
        data = f"confirm:{entry.id}"

        try:
            with (
                patch(
                    "finlog.agent.orchestrator.load_taxonomy",
                    new_callable=AsyncMock,
                    return_value=TAXONOMY,
                ),
                patch(
                    "finlog.ledger.writer.repository.append_ledger_rows",
                    new_callable=AsyncMock,
                ) as mock_append,
                patch("finlog.bot.handlers.error_sink.record", new_callable=AsyncMock) as mock_record,
            ):
                await handle_callback(_make_callback_query(data), session, transport)
        finally:
            set_orchestrator(None)

        mock_append.assert_awaited_once()
        assert calls == ["commit", "rollback"]
        assert mock_record.call_args.args[0] == "handle_callback"
        assert mock_record.call_args.args[2] == {"callback_data": data}
        transport.send_text.assert_awaited_once_with(CHAT_ID, GENERIC_ERROR_REPLY)


# ── _guarded ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_guarded_survives_failed_notification() -> None:
    transport = _make_transport()
    transport.send_text = AsyncMock(side_effect=RuntimeError("telegram down"))
    work = AsyncMock(side_effect=ValueError("bad"))

    with patch("finlog.bot.handlers.error_sink.record", new_callable=AsyncMock) as mock_record:
        await _guarded(transport, CHAT_ID, "cmd_balance", work)

    work.assert_awaited_once()
    mock_record.assert_awaited_once()
    transport.send_text.assert_awaited_once_with(CHAT_ID, GENERIC_ERROR_REPLY)


@pytest.mark.asyncio
async def test_guarded_success_does_nothing_else() -> None:
    transport = _make_transport()
    work = AsyncMock()

    with patch("finlog.bot.handlers.error_sink.record", new_callable=AsyncMock) as mock_record:
        await _guarded(transport, CHAT_ID, "cmd_balance", work)

    mock_record.assert_not_called()
    transport.send_text.assert_not_called()
