"""Aiogram middleware for access control and database session injection.

Middleware runs on every incoming update *before* it reaches a handler.

- :class:`AccessControlMiddleware`: restricts the bot to allowed Telegram
  user IDs (configured via ``ALLOWED_TELEGRAM_USER_IDS``).
- :class:`DbSessionMiddleware`: opens an async DB session per update and
  injects it into handler data so handlers don't manage sessions directly.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Update

from finlog.config import settings
from finlog.db.session import get_session

logger = logging.getLogger(__name__)


def _sender_id(event: TelegramObject) -> int | None:
    """Telegram user ID behind a message or callback update, if any."""
    if not isinstance(event, Update):
        return None
    if event.message and event.message.from_user:
        return event.message.from_user.id
    if event.callback_query and event.callback_query.from_user:
        return event.callback_query.from_user.id
    return None


class AccessControlMiddleware(BaseMiddleware):
    """Drop updates from users not in the allow-list.

    The bot keeps a personal ledger, so when
    ``settings.allowed_telegram_user_ids`` is set only those users may talk
    to it.  An empty list allows everyone (useful during development).
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        user_id = _sender_id(event)
        allowed_ids = settings.allowed_telegram_user_ids

        if allowed_ids and user_id not in allowed_ids:
            logger.warning("Rejected update from unauthorized user %s", user_id)
            return None

        return await handler(event, data)


class DbSessionMiddleware(BaseMiddleware):
    """Inject an async database session into handler data.

    The session is available to handlers via ``data["session"]``.  It is
    committed when the handler returns and rolled back if it raises (see
    :func:`finlog.db.session.get_session`).
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        async with get_session() as session:
            data["session"] = session
            return await handler(event, data)
