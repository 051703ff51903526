"""Telegram message and command handlers.

Defines an aiogram :class:`Router` with:

- ``/start``, ``/ayuda`` (``/help``): welcome and usage guide
- ``/cuentas``: configured accounts
- ``/categorias_gastos``, ``/categorias_ingresos``,
  ``/categorias_inversiones``: category listings
- ``/subcategorias [categoría]`` and ``/ls_<categoría>``: subcategories
- ``/saldo``: per-account balances from the ledger
- Text and voice handlers: send the message through the orchestrator
  and reply with the result
- Callback query handler: Confirm / Edit / Cancel button presses

Every handler runs its work through :func:`_guarded`: an unexpected error
is logged, recorded in the error sink, and the user gets one best-effort
notification.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from aiogram import Bot, F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from finlog.agent import process_callback, process_message
from finlog.agent.extraction import VoiceNote
from finlog.agent.llm_client import estimate_cost_usd
from finlog.agent.orchestrator import CONFIG_ERROR_REPLY, OrchestratorResult
from finlog.bot.formatters import (
    format_accounts,
    format_balances,
    format_category_list,
    format_category_not_found,
    format_subcategories,
    format_subcategory_index,
)
from finlog.bot.transport import Transport
from finlog.error_sink import error_sink
from finlog.errors import ConfigError
from finlog.ledger.balance import get_account_balances
from finlog.ledger.records import Taxonomy
from finlog.ledger.repository import save_llm_call
from finlog.ledger.taxonomy import find_category, load_taxonomy

logger = logging.getLogger(__name__)

router = Router(name="main")

GENERIC_ERROR_REPLY = "⚠️ Ocurrió un error inesperado. Intentá de nuevo más tarde."

WELCOME_TEXT = (
    "<b>¡Hola! Soy tu asistente de finanzas.</b>\n\n"
    "Contame tus gastos, ingresos, transferencias o inversiones con un "
    "mensaje de texto o de voz, por ejemplo:\n"
    '  <i>"Gasté 2500 en el super con la Visa"</i>\n'
    '  <i>"Pasé 10000 de Banco a Mercado Pago"</i>\n\n'
    "Te muestro lo que entendí y lo guardo cuando lo confirmás.\n"
    "Escribí /ayuda para ver los comandos."
)

HELP_TEXT = (
    "\U0001f916 <b>Comandos disponibles</b>\n\n"
    "/categorias_gastos — Ver categorías de gastos\n"
    "/categorias_ingresos — Ver categorías de ingresos\n"
    "/categorias_inversiones — Ver categorías de inversiones\n"
    "/subcategorias [categoría] — Ver subcategorías de una categoría\n"
    "/cuentas — Ver cuentas disponibles\n"
    "/saldo — Ver el saldo de cada cuenta\n"
    "/ayuda — Ver esta ayuda"
)

_LS_RE = re.compile(r"^/ls_([^\s@]+)")


# ── Commands ──────────────────────────────────────────────────────────────────


@router.message(Command("start"))
async def cmd_start(message: Message, transport: Transport) -> None:
    """Handle the /start command with a welcome message."""
    await transport.send_text(message.chat.id, WELCOME_TEXT)


@router.message(Command("ayuda", "help"))
async def cmd_help(message: Message, transport: Transport) -> None:
    """Handle /ayuda (and /help) with the command list."""
    await transport.send_text(message.chat.id, HELP_TEXT)


@router.message(Command("cuentas"))
async def cmd_accounts(message: Message, session: AsyncSession, transport: Transport) -> None:
    """List configured accounts."""
    async def work() -> None:
        taxonomy = await _load_taxonomy_or_notify(session, transport, message.chat.id)
        if taxonomy is not None:
            await transport.send_text(message.chat.id, format_accounts(taxonomy.accounts))

    await _guarded(transport, message.chat.id, "cmd_accounts", work, session)


@router.message(Command("categorias_gastos", "categorias_ingresos", "categorias_inversiones"))
async def cmd_categories(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
    transport: Transport,
) -> None:
    """List expense, income or investment categories."""
    async def work() -> None:
        taxonomy = await _load_taxonomy_or_notify(session, transport, message.chat.id)
        if taxonomy is None:
            return
        title, categories = {
            "categorias_gastos": ("Categorías de gastos", taxonomy.expense_categories),
            "categorias_ingresos": ("Categorías de ingresos", taxonomy.income_categories),
            "categorias_inversiones": ("Categorías de inversiones", taxonomy.investment_categories),
        }[command.command.lower()]
        await transport.send_text(message.chat.id, format_category_list(title, categories))

    await _guarded(transport, message.chat.id, "cmd_categories", work, session)


@router.message(Command("subcategorias"))
async def cmd_subcategories(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
    transport: Transport,
) -> None:
    """List subcategories of a category, or the clickable category index."""
    async def work() -> None:
        taxonomy = await _load_taxonomy_or_notify(session, transport, message.chat.id)
        if taxonomy is None:
            return
        search = (command.args or "").strip()
        if not search:
            text = format_subcategory_index(_all_categories(taxonomy))
        else:
            text = _subcategories_reply(search, taxonomy)
        await transport.send_text(message.chat.id, text)

    await _guarded(transport, message.chat.id, "cmd_subcategories", work, session)


@router.message(F.text.regexp(_LS_RE).as_("match"))
async def cmd_list_subcategories(
    message: Message,
    match: re.Match[str],
    session: AsyncSession,
    transport: Transport,
) -> None:
    """Handle ``/ls_<categoría>`` links produced by ``/subcategorias``."""
    async def work() -> None:
        taxonomy = await _load_taxonomy_or_notify(session, transport, message.chat.id)
        if taxonomy is None:
            return
        search = match.group(1).replace("_", " ")
        await transport.send_text(message.chat.id, _subcategories_reply(search, taxonomy))

    await _guarded(transport, message.chat.id, "cmd_list_subcategories", work, session)


@router.message(Command("saldo"))
async def cmd_balance(message: Message, session: AsyncSession, transport: Transport) -> None:
    """Show per-account balances derived from the ledger."""
    async def work() -> None:
        balances = await get_account_balances(session)
        await transport.send_text(message.chat.id, format_balances(balances))

    await _guarded(transport, message.chat.id, "cmd_balance", work, session)


# ── Movements ─────────────────────────────────────────────────────────────────


@router.message(F.text)
async def handle_text(message: Message, session: AsyncSession, transport: Transport) -> None:
    """Send a free-text message through the orchestrator and reply."""
    if not message.text:
        return

    async def work() -> None:
        result = await process_message(
            chat_id=message.chat.id,
            content=message.text,
            session=session,
            message_date=message.date,
        )
        await _log_llm_responses(session, result)
        await _deliver(transport, message.chat.id, result)

    await _guarded(transport, message.chat.id, "handle_text", work, session)


@router.message(F.voice)
async def handle_voice(
    message: Message,
    bot: Bot,
    session: AsyncSession,
    transport: Transport,
) -> None:
    """Download a voice note and send it through the orchestrator."""
    if not message.voice:
        return

    async def work() -> None:
        audio = await bot.download(message.voice)
        note = VoiceNote(
            data=audio.read() if audio is not None else b"",
            mime_type=message.voice.mime_type or "audio/ogg",
        )
        result = await process_message(
            chat_id=message.chat.id,
            content=note,
            session=session,
            message_date=message.date,
        )
        await _log_llm_responses(session, result)
        await _deliver(transport, message.chat.id, result)

    await _guarded(transport, message.chat.id, "handle_voice", work, session)


# ── Callback query handler ───────────────────────────────────────────────────


@router.callback_query()
async def handle_callback(
    callback_query: CallbackQuery,
    session: AsyncSession,
    transport: Transport,
) -> None:
    """Process inline keyboard callbacks (Confirm / Edit / Cancel).

    Delegates to the orchestrator and either edits the message that
    carried the buttons or sends a new reply.
    """
    if not callback_query.data or callback_query.message is None:
        await transport.acknowledge(callback_query.id)
        return

    chat_id = callback_query.message.chat.id
    message_id = callback_query.message.message_id
    logger.info("Callback from chat %s: %s", chat_id, callback_query.data)

    async def work() -> None:
        # Acknowledge first to remove the loading indicator.
        await transport.acknowledge(callback_query.id)
        result = await process_callback(
            chat_id=chat_id,
            callback_data=callback_query.data,
            session=session,
        )
        await _log_llm_responses(session, result)
        await _deliver(transport, chat_id, result, message_id=message_id)

    await _guarded(
        transport, chat_id, "handle_callback", work, session,
        context={"callback_data": callback_query.data},
    )


# ── Helpers ───────────────────────────────────────────────────────────────────


async def _guarded(
    transport: Transport,
    chat_id: int,
    function_name: str,
    work: Callable[[], Awaitable[None]],
    session: AsyncSession | None = None,
    context: dict[str, Any] | None = None,
) -> None:
    """Run *work*; on any error log it, record it, and notify the chat once."""
    try:
        await work()
    except Exception as exc:
        logger.exception("Unhandled error in %s for chat %s", function_name, chat_id)
        if session is not None:
            await session.rollback()
        await error_sink.record(function_name, exc, context, chat_id=chat_id)
        try:
            await transport.send_text(chat_id, GENERIC_ERROR_REPLY)
        except Exception:
            logger.exception("Could not notify chat %s about the error", chat_id)


async def _deliver(
    transport: Transport,
    chat_id: int,
    result: OrchestratorResult,
    message_id: int | None = None,
) -> None:
    """Send or edit the reply described by *result*."""
    if result.edit_message and message_id is not None:
        await transport.edit_text(chat_id, message_id, result.reply_text, result.choices or None)
    elif result.choices:
        await transport.send_choices(chat_id, result.reply_text, result.choices)
    else:
        await transport.send_text(chat_id, result.reply_text)


async def _load_taxonomy_or_notify(
    session: AsyncSession,
    transport: Transport,
    chat_id: int,
) -> Taxonomy | None:
    try:
        return await load_taxonomy(session)
    except ConfigError as exc:
        logger.error("Taxonomy unavailable for command in chat %s: %s", chat_id, exc)
        await error_sink.record("load_taxonomy", exc, chat_id=chat_id)
        await transport.send_text(chat_id, CONFIG_ERROR_REPLY)
        return None


def _all_categories(taxonomy: Taxonomy) -> dict[str, tuple[str, ...]]:
    return {
        **taxonomy.expense_categories,
        **taxonomy.income_categories,
        **taxonomy.investment_categories,
    }


def _subcategories_reply(search: str, taxonomy: Taxonomy) -> str:
    categories = _all_categories(taxonomy)
    category = find_category(search, categories)
    if category is None:
        return format_category_not_found(search, categories)
    return format_subcategories(category, categories[category])


async def _log_llm_responses(session: AsyncSession, result: OrchestratorResult) -> None:
    """Log all LLM calls embedded in an orchestrator result."""
    for llm_response in result.llm_responses:
        provider = llm_response.provider.replace(" (fallback)", "")
        await save_llm_call(
            session,
            provider=provider,
            model=llm_response.model,
            input_tokens=llm_response.input_tokens,
            output_tokens=llm_response.output_tokens,
            latency_ms=llm_response.latency_ms,
            is_fallback=llm_response.is_fallback,
            cost_usd=estimate_cost_usd(
                provider, llm_response.model,
                llm_response.input_tokens, llm_response.output_tokens,
            ),
        )
