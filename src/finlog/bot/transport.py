"""Chat transport used by the handlers.

:class:`Transport` is the narrow interface the handler layer needs from a
chat service: send text, send text with inline choices, edit a message,
and acknowledge a button press.  :class:`TelegramTransport` implements it
over the aiogram :class:`~aiogram.Bot`.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest

from finlog.agent.orchestrator import Choice
from finlog.bot.keyboards import choices_keyboard

logger = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    """Outbound chat operations."""

    async def send_text(self, chat_id: int, text: str) -> int:
        """Send *text*; return the new message ID."""
        ...

    async def send_choices(self, chat_id: int, text: str, choices: list[Choice]) -> int:
        """Send *text* with one inline button per choice; return the message ID."""
        ...

    async def edit_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        choices: list[Choice] | None = None,
    ) -> None:
        """Replace the text (and buttons) of an existing message."""
        ...

    async def acknowledge(self, callback_id: str, text: str | None = None) -> None:
        """Answer a callback query so the client stops its loading indicator."""
        ...


class TelegramTransport:
    """:class:`Transport` backed by an aiogram :class:`Bot`."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_text(self, chat_id: int, text: str) -> int:
        sent = await self._bot.send_message(chat_id, text)
        return sent.message_id

    async def send_choices(self, chat_id: int, text: str, choices: list[Choice]) -> int:
        sent = await self._bot.send_message(chat_id, text, reply_markup=choices_keyboard(choices))
        return sent.message_id

    async def edit_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        choices: list[Choice] | None = None,
    ) -> None:
        markup = choices_keyboard(choices) if choices else None
        try:
            await self._bot.edit_message_text(
                text,
                chat_id=chat_id,
                message_id=message_id,
                reply_markup=markup,
            )
        except TelegramBadRequest as exc:
            # Editing to identical content is rejected by Telegram; nothing to do.
            if "message is not modified" not in str(exc):
                raise
            logger.debug("Message %s in chat %s already up to date", message_id, chat_id)

    async def acknowledge(self, callback_id: str, text: str | None = None) -> None:
        await self._bot.answer_callback_query(callback_id, text=text)
