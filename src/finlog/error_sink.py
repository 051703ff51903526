"""Persistent error sink.

:class:`ErrorSink` writes rejected records and caught exceptions to the
``error_log`` table so they can be inspected after the fact.  It uses its
own session, independent of the (possibly rolled back) session of the turn
that failed, and never raises: if the database write fails the error is
written to the module logger instead.
"""

from __future__ import annotations

import json
import logging
import traceback
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from finlog.ledger.repository import save_error

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _default_session_factory() -> AbstractAsyncContextManager[AsyncSession]:
    from finlog.db.session import get_session

    return get_session()


def _jsonable(context: dict[str, Any] | None) -> dict[str, Any] | None:
    """Round-trip *context* through JSON, stringifying anything exotic."""
    if context is None:
        return None
    return json.loads(json.dumps(context, default=str, ensure_ascii=False))


class ErrorSink:
    """Records errors to the ``error_log`` table.

    Args:
        session_factory: Returns an async context manager yielding a session
            that commits on exit (defaults to
            :func:`finlog.db.session.get_session`).
    """

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or _default_session_factory

    async def record(
        self,
        function_name: str,
        error: BaseException | str,
        context: dict[str, Any] | None = None,
        chat_id: int | None = None,
    ) -> None:
        """Persist one error.  Never raises.

        Args:
            function_name: Label of the failure site.
            error: The caught exception, or a rejection reason.
            context: Diagnostic details (serialized to JSON).
            chat_id: Chat the error belongs to, if known.
        """
        if isinstance(error, BaseException):
            message = f"{type(error).__name__}: {error}"
            tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        else:
            message = error
            tb = None

        try:
            payload = _jsonable(context)
            async with self._session_factory() as session:
                await save_error(
                    session,
                    function_name=function_name,
                    message=message,
                    traceback_str=tb,
                    context=payload,
                    chat_id=chat_id,
                )
        except Exception:
            logger.exception(
                "Could not persist error from %s: %s (context=%r)",
                function_name, message, context,
            )


# ── Module-level singleton ────────────────────────────────────────────────────

error_sink = ErrorSink()
