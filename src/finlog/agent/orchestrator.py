"""Confirmation state machine for reported movements.

Each movement goes through::

    AwaitingExtraction → AwaitingConfirmation → Confirmed
                                              → Cancelled
                                              → AwaitingEditInstruction → AwaitingConfirmation

Two public entry points:

- :meth:`Orchestrator.handle_message`: for incoming text or voice messages.
- :meth:`Orchestrator.handle_callback`: for inline keyboard button presses.

Both return an :class:`OrchestratorResult` that the bot handler layer
converts into a Telegram reply.  The orchestrator itself never talks to
Telegram.
"""

from __future__ import annotations

import datetime as dt
import html
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from finlog.agent.extraction import Extractor, VoiceNote, normalize_extraction
from finlog.agent.llm_client import LLMResponse
from finlog.agent.state import PendingEntry, PendingStore, pending_store
from finlog.error_sink import ErrorSink, error_sink
from finlog.errors import ConfigError, ExtractionError, LedgerError, StaleReferenceError
from finlog.ledger.display import format_movement
from finlog.ledger.records import DATE_FORMAT, Movement, Taxonomy
from finlog.ledger.taxonomy import load_taxonomy
from finlog.ledger.validation import validate_record
from finlog.ledger.writer import local_date, post_movement

logger = logging.getLogger(__name__)

# ── Callback data ─────────────────────────────────────────────────────────────
# Callback data is "<action>:<pending entry id>".

CB_CONFIRM = "confirm"
CB_EDIT = "edit"
CB_CANCEL = "cancel"

# ── User-facing replies ───────────────────────────────────────────────────────

STALE_REPLY = "⌛ Los datos ya no están disponibles. Enviá el movimiento de nuevo."
CONFIG_ERROR_REPLY = (
    "⚠️ No pude leer la configuración de cuentas y categorías. "
    "Revisá la tabla de configuración e intentá de nuevo."
)
EXTRACTION_ERROR_REPLY = (
    "⚠️ No pude procesar tu mensaje en este momento. "
    "Intentá de nuevo en unos minutos."
)
NOT_UNDERSTOOD_REPLY = (
    "No encontré un movimiento en tu mensaje. Probá con algo como:\n"
    '<i>"Gasté 2500 en el super con la Visa"</i>'
)
LEDGER_ERROR_REPLY = (
    "⚠️ No pude guardar el registro. Podés intentar confirmar de nuevo."
)
UNKNOWN_ACTION_REPLY = "Acción desconocida."
EDIT_INSTRUCTIONS = (
    "Decime qué querés cambiar, por ejemplo:\n"
    '<i>"el monto es 3200"</i>\n'
    '<i>"era con la cuenta Mercado Pago"</i>'
)


@dataclass(frozen=True)
class Choice:
    """One inline button: its label and callback data."""

    label: str
    callback_data: str


def confirmation_choices(entry_id: str) -> list[Choice]:
    """Confirm / Edit / Cancel choices for the pending entry *entry_id*."""
    return [
        Choice("✅ Confirmar", f"{CB_CONFIRM}:{entry_id}"),
        Choice("✏️ Editar", f"{CB_EDIT}:{entry_id}"),
        Choice("❌ Cancelar", f"{CB_CANCEL}:{entry_id}"),
    ]


# ── Result dataclass ──────────────────────────────────────────────────────────


@dataclass
class OrchestratorResult:
    """Value object returned by the orchestrator to the bot handler layer."""

    #: Text to send (or edit into the message that carried the buttons).
    reply_text: str

    #: Inline choices to attach to the reply.
    choices: list[Choice] = field(default_factory=list)

    #: If ``True`` the bot should *edit* the callback's message rather than
    #: send a new one.
    edit_message: bool = False

    #: The LLM response(s) generated during this step (for logging).
    llm_responses: list[LLMResponse] = field(default_factory=list)


class _TurnFailed(Exception):
    """Internal: carries the reply for a turn that ended early."""

    def __init__(self, result: OrchestratorResult) -> None:
        super().__init__(result.reply_text)
        self.result = result


# ── Orchestrator ──────────────────────────────────────────────────────────────


class Orchestrator:
    """Drives one movement from extraction through confirm / edit / cancel.

    Args:
        extractor: Runs the extraction LLM.
        store: Pending-record store (defaults to the module-level singleton).
        sink: Error sink for rejections and failures (defaults to the
            module-level singleton).
    """

    def __init__(
        self,
        extractor: Extractor,
        store: PendingStore | None = None,
        sink: ErrorSink | None = None,
    ) -> None:
        self._extractor = extractor
        self._store = store or pending_store
        self._sink = sink or error_sink

    # ── Public entry points ───────────────────────────────────────────────

    async def handle_message(
        self,
        chat_id: int,
        content: str | VoiceNote,
        session: AsyncSession,
        message_date: dt.datetime,
    ) -> OrchestratorResult:
        """Process an incoming text or voice message.

        If the chat is in edit mode the message is treated as a correction
        to the pending entry; otherwise it starts a new movement.

        Args:
            chat_id: Telegram chat ID.
            content: Message text or voice note.
            session: Active DB session.
            message_date: Timestamp of the message (fallback posting date).

        Returns:
            An :class:`OrchestratorResult` for the bot handler to send.
        """
        marker = self._store.get_edit_marker(chat_id)
        try:
            if marker is not None:
                return await self._apply_edit(chat_id, marker.entry_id, content, session, message_date)
            return await self._start_movement(chat_id, content, session, message_date)
        except _TurnFailed as failed:
            return failed.result

    async def handle_callback(
        self,
        chat_id: int,
        callback_data: str,
        session: AsyncSession,
    ) -> OrchestratorResult:
        """Process an inline keyboard callback (Confirm / Edit / Cancel).

        Args:
            chat_id: Telegram chat ID.
            callback_data: The callback string (e.g. ``"confirm:abc"``).
            session: Active DB session.

        Returns:
            An :class:`OrchestratorResult` for the bot handler to send.
        """
        action, _, entry_id = callback_data.partition(":")
        try:
            if action == CB_CONFIRM:
                return await self._confirm(chat_id, entry_id, session)
            elif action == CB_EDIT:
                return self._start_edit(chat_id, entry_id)
            elif action == CB_CANCEL:
                return self._cancel(chat_id, entry_id)
            else:
                logger.warning("Unknown callback action %r from chat %s", action, chat_id)
                return OrchestratorResult(reply_text=UNKNOWN_ACTION_REPLY)
        except StaleReferenceError as exc:
            logger.info("Callback %r for chat %s: %s", action, chat_id, exc)
            self._store.clear_edit_marker(chat_id, entry_id)
            return OrchestratorResult(reply_text=STALE_REPLY, edit_message=True)
        except _TurnFailed as failed:
            return failed.result

    # ── Internal: new movement ────────────────────────────────────────────

    async def _start_movement(
        self,
        chat_id: int,
        content: str | VoiceNote,
        session: AsyncSession,
        message_date: dt.datetime,
    ) -> OrchestratorResult:
        taxonomy = await self._load_taxonomy(chat_id, session)
        movement, responses = await self._extract_movement(
            chat_id, content, taxonomy, message_date, current=None,
        )
        entry = self._store.create_pending(movement, message_date)
        logger.info("Chat %s: pending entry %s awaiting confirmation", chat_id, entry.id)
        return self._prompt(entry, responses)

    # ── Internal: edit flow ───────────────────────────────────────────────

    def _start_edit(self, chat_id: int, entry_id: str) -> OrchestratorResult:
        entry = self._store.get_pending(entry_id)
        self._store.start_edit(chat_id, entry)
        text = format_movement(
            entry.record,
            _display_date(entry.origin_timestamp),
            prefix="✏️ <b>Editando</b>",
        )
        return OrchestratorResult(
            reply_text=f"{text}\n\n{EDIT_INSTRUCTIONS}",
            edit_message=True,
        )

    async def _apply_edit(
        self,
        chat_id: int,
        entry_id: str,
        content: str | VoiceNote,
        session: AsyncSession,
        message_date: dt.datetime,
    ) -> OrchestratorResult:
        try:
            entry = self._store.get_pending(entry_id)
        except StaleReferenceError:
            self._store.clear_edit_marker(chat_id)
            return OrchestratorResult(reply_text=STALE_REPLY)

        taxonomy = await self._load_taxonomy(chat_id, session)
        # A failed correction leaves the chat in edit mode so the user can retry.
        movement, responses = await self._extract_movement(
            chat_id, content, taxonomy, message_date, current=entry.record,
        )

        try:
            updated = self._store.replace_record(entry_id, movement)
        except StaleReferenceError:
            self._store.clear_edit_marker(chat_id)
            return OrchestratorResult(reply_text=STALE_REPLY, llm_responses=responses)

        self._store.clear_edit_marker(chat_id)
        logger.info("Chat %s: pending entry %s edited", chat_id, entry_id)
        return self._prompt(updated, responses)

    # ── Internal: confirm / cancel ────────────────────────────────────────

    async def _confirm(self, chat_id: int, entry_id: str, session: AsyncSession) -> OrchestratorResult:
        entry = self._store.get_pending(entry_id)
        taxonomy = await self._load_taxonomy(chat_id, session)

        # The entry is only discarded once its rows are durable.
        try:
            rows = await post_movement(session, entry.record, entry.origin_timestamp, taxonomy)
            await session.commit()
        except (LedgerError, SQLAlchemyError) as exc:
            logger.exception("Chat %s: posting entry %s failed", chat_id, entry_id)
            await session.rollback()
            await self._sink.record(
                "post_movement",
                exc,
                {"entry_id": entry_id, "record": entry.record.model_dump(mode="json")},
                chat_id=chat_id,
            )
            return OrchestratorResult(
                reply_text=LEDGER_ERROR_REPLY,
                choices=confirmation_choices(entry_id),
                edit_message=True,
            )

        self._store.discard_pending(entry_id)
        self._store.clear_edit_marker(chat_id, entry_id)
        logger.info("Chat %s: confirmed entry %s (%d rows)", chat_id, entry_id, len(rows))
        return OrchestratorResult(
            reply_text=format_movement(
                entry.record,
                rows[0].date_display,
                prefix="✅ <b>Registrado</b>",
            ),
            edit_message=True,
        )

    def _cancel(self, chat_id: int, entry_id: str) -> OrchestratorResult:
        entry = self._store.get_pending(entry_id)
        self._store.discard_pending(entry_id)
        self._store.clear_edit_marker(chat_id, entry_id)
        logger.info("Chat %s: cancelled entry %s", chat_id, entry_id)
        return OrchestratorResult(
            reply_text=format_movement(
                entry.record,
                _display_date(entry.origin_timestamp),
                prefix="❌ <b>Cancelado</b>",
            ),
            edit_message=True,
        )

    # ── Internal: shared steps ────────────────────────────────────────────

    async def _load_taxonomy(self, chat_id: int, session: AsyncSession) -> Taxonomy:
        try:
            return await load_taxonomy(session)
        except ConfigError as exc:
            logger.error("Chat %s: taxonomy unavailable: %s", chat_id, exc)
            await self._sink.record("load_taxonomy", exc, chat_id=chat_id)
            raise _TurnFailed(OrchestratorResult(reply_text=CONFIG_ERROR_REPLY)) from exc

    async def _extract_movement(
        self,
        chat_id: int,
        content: str | VoiceNote,
        taxonomy: Taxonomy,
        message_date: dt.datetime,
        current: Movement | None,
    ) -> tuple[Movement, list[LLMResponse]]:
        """Extract, normalize and validate; raise :class:`_TurnFailed` on any failure."""
        try:
            extraction = await self._extractor.extract(
                content, taxonomy, _display_date(message_date), current=current,
            )
        except ExtractionError as exc:
            logger.warning("Chat %s: extraction failed: %s (raw=%r)", chat_id, exc, exc.raw)
            await self._sink.record("extract", exc, {"raw": exc.raw}, chat_id=chat_id)
            raise _TurnFailed(OrchestratorResult(reply_text=EXTRACTION_ERROR_REPLY)) from exc

        responses = extraction.responses
        candidate = normalize_extraction(extraction.payload)
        if candidate is None:
            await self._sink.record(
                "normalize_extraction",
                "Unrecognized extraction payload",
                {"payload": extraction.payload},
                chat_id=chat_id,
            )
            raise _TurnFailed(
                OrchestratorResult(reply_text=NOT_UNDERSTOOD_REPLY, llm_responses=responses)
            )

        result = validate_record(candidate, taxonomy)
        if not result.valid or result.movement is None:
            await self._sink.record(
                "validate_record",
                result.reason or "rejected",
                {**result.context, "candidate": candidate.model_dump(by_alias=True)},
                chat_id=chat_id,
            )
            raise _TurnFailed(
                OrchestratorResult(
                    reply_text=f"⚠️ {html.escape(result.reason or '')}",
                    llm_responses=responses,
                )
            )

        return result.movement, responses

    def _prompt(self, entry: PendingEntry, responses: list[LLMResponse]) -> OrchestratorResult:
        return OrchestratorResult(
            reply_text=format_movement(
                entry.record,
                _display_date(entry.origin_timestamp),
                prefix="❓ <b>¿Confirmás este registro?</b>",
            ),
            choices=confirmation_choices(entry.id),
            llm_responses=responses,
        )


def _display_date(timestamp: dt.datetime) -> str:
    return local_date(timestamp).strftime(DATE_FORMAT)
