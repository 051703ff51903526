"""Pending-record store for the confirmation flow.

Provides:

- :class:`Namespace`: the two key families kept in the cache.
- :class:`TTLCache`: in-memory key/value cache with a per-entry expiry.
- :class:`PendingEntry`: a validated movement awaiting confirmation.
- :class:`EditModeMarker`: per-chat flag that the next message edits a
  pending entry.
- :class:`PendingStore`: typed operations over the cache, used by the
  orchestrator.

Everything lives in process memory.  If the bot restarts, pending entries
are lost and the user simply re-sends the message.
"""

from __future__ import annotations

import datetime as dt
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable

from finlog.config import settings
from finlog.errors import StaleReferenceError
from finlog.ledger.records import Movement

logger = logging.getLogger(__name__)


class Namespace(StrEnum):
    """Key families in the cache.  Keys never collide across namespaces."""

    PENDING = "pending"
    EDIT_MODE = "edit_mode"


# ── TTL cache ─────────────────────────────────────────────────────────────────


@dataclass
class _Slot:
    value: Any
    expires_at: float


class TTLCache:
    """Dict-based cache where every entry carries its own expiry.

    Thread-safety is not required: the bot runs on a single asyncio event
    loop.  Expired entries are dropped lazily on access.

    Args:
        clock: Monotonic time source in seconds (injectable for tests).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._slots: dict[tuple[Namespace, str], _Slot] = {}

    def put(self, namespace: Namespace, key: str, value: Any, ttl_seconds: float) -> None:
        """Store *value*, replacing any previous entry and its expiry."""
        self._slots[(namespace, key)] = _Slot(value, self._clock() + ttl_seconds)

    def get(self, namespace: Namespace, key: str) -> Any | None:
        """Return the live value for *key*, or ``None`` if absent or expired."""
        slot = self._slots.get((namespace, key))
        if slot is None:
            return None
        if self._clock() >= slot.expires_at:
            del self._slots[(namespace, key)]
            return None
        return slot.value

    def replace(self, namespace: Namespace, key: str, value: Any) -> bool:
        """Swap the value of a live entry, keeping its expiry.

        Returns ``False`` (and stores nothing) if the entry is gone.
        """
        if self.get(namespace, key) is None:
            return False
        self._slots[(namespace, key)].value = value
        return True

    def remove(self, namespace: Namespace, key: str) -> None:
        """Drop *key*; a no-op if it is absent."""
        self._slots.pop((namespace, key), None)

    def __len__(self) -> int:
        return len(self._slots)


# ── Stored values ─────────────────────────────────────────────────────────────


@dataclass
class PendingEntry:
    """A validated movement waiting for the user to confirm, edit or cancel."""

    record: Movement

    #: Timestamp of the originating message; the fallback posting date.
    origin_timestamp: dt.datetime

    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class EditModeMarker:
    """Marks that the next message in a chat is an edit instruction."""

    entry_id: str

    #: The movement as it was when editing started.
    snapshot: Movement


# ── Pending store ─────────────────────────────────────────────────────────────


class PendingStore:
    """Typed facade over :class:`TTLCache` for the confirmation flow.

    Args:
        cache: Backing cache (a fresh one by default).
        pending_ttl: Lifetime of pending entries in seconds.
        edit_ttl: Lifetime of edit-mode markers in seconds.
    """

    def __init__(
        self,
        cache: TTLCache | None = None,
        pending_ttl: float | None = None,
        edit_ttl: float | None = None,
    ) -> None:
        self._cache = cache if cache is not None else TTLCache()
        self._pending_ttl = pending_ttl if pending_ttl is not None else settings.pending_ttl_seconds
        self._edit_ttl = edit_ttl if edit_ttl is not None else settings.edit_mode_ttl_seconds

    # ── Pending entries ───────────────────────────────────────────────

    def create_pending(self, record: Movement, origin_timestamp: dt.datetime) -> PendingEntry:
        """Cache *record* under a fresh id and return the new entry."""
        entry = PendingEntry(record=record, origin_timestamp=origin_timestamp)
        self._cache.put(Namespace.PENDING, entry.id, entry, self._pending_ttl)
        logger.debug("Created pending entry %s (%s)", entry.id, record.kind.value)
        return entry

    def get_pending(self, entry_id: str) -> PendingEntry:
        """Return the live entry for *entry_id*.

        Raises:
            StaleReferenceError: If the entry expired or never existed.
        """
        entry = self._cache.get(Namespace.PENDING, entry_id)
        if entry is None:
            raise StaleReferenceError(entry_id)
        return entry

    def replace_record(self, entry_id: str, record: Movement) -> PendingEntry:
        """Swap the movement of a live entry; timestamp and expiry are kept.

        Raises:
            StaleReferenceError: If the entry expired meanwhile.
        """
        entry = self.get_pending(entry_id)
        updated = PendingEntry(record=record, origin_timestamp=entry.origin_timestamp, id=entry.id)
        self._cache.replace(Namespace.PENDING, entry_id, updated)
        return updated

    def discard_pending(self, entry_id: str) -> None:
        self._cache.remove(Namespace.PENDING, entry_id)

    # ── Edit-mode markers ─────────────────────────────────────────────

    def start_edit(self, chat_id: int, entry: PendingEntry) -> EditModeMarker:
        """Put *chat_id* into edit mode for *entry*."""
        marker = EditModeMarker(entry_id=entry.id, snapshot=entry.record)
        self._cache.put(Namespace.EDIT_MODE, str(chat_id), marker, self._edit_ttl)
        return marker

    def get_edit_marker(self, chat_id: int) -> EditModeMarker | None:
        return self._cache.get(Namespace.EDIT_MODE, str(chat_id))

    def clear_edit_marker(self, chat_id: int, entry_id: str | None = None) -> None:
        """Leave edit mode.

        When *entry_id* is given the marker is only cleared if it points at
        that entry.
        """
        if entry_id is not None:
            marker = self.get_edit_marker(chat_id)
            if marker is None or marker.entry_id != entry_id:
                return
        self._cache.remove(Namespace.EDIT_MODE, str(chat_id))


# ── Module-level singleton ────────────────────────────────────────────────────

pending_store = PendingStore()
