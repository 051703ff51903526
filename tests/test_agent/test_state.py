"""Tests for the TTL cache and the pending-record store."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from finlog.agent.state import EditModeMarker, Namespace, PendingStore, TTLCache
from finlog.errors import StaleReferenceError
from finlog.ledger.records import Movement, MovementKind


class FakeClock:
    """Manually advanced time source."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _movement(amount: str = "2500") -> Movement:
    return Movement(
        kind=MovementKind.EXPENSE,
        amount=Decimal(amount),
        description="Nafta",
        category="Auto",
        subcategory="Auto > Nafta",
        account="Banco",
    )


TS = dt.datetime(2024, 3, 10, 15, 0, tzinfo=dt.timezone.utc)


def _make_store(clock: FakeClock) -> PendingStore:
    return PendingStore(cache=TTLCache(clock=clock), pending_ttl=100, edit_ttl=10)


# ── TTLCache ──────────────────────────────────────────────────────────────────


class TestTTLCache:
    def test_put_and_get(self) -> None:
        cache = TTLCache(clock=FakeClock())
        cache.put(Namespace.PENDING, "a", 1, ttl_seconds=5)
        assert cache.get(Namespace.PENDING, "a") == 1

    def test_expires_at_ttl(self) -> None:
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.put(Namespace.PENDING, "a", 1, ttl_seconds=5)

        clock.advance(4)
        assert cache.get(Namespace.PENDING, "a") == 1
        clock.advance(1)
        assert cache.get(Namespace.PENDING, "a") is None
        assert len(cache) == 0

    def test_namespaces_do_not_collide(self) -> None:
        cache = TTLCache(clock=FakeClock())
        cache.put(Namespace.PENDING, "42", "entry", ttl_seconds=5)
        cache.put(Namespace.EDIT_MODE, "42", "marker", ttl_seconds=5)

        assert cache.get(Namespace.PENDING, "42") == "entry"
        assert cache.get(Namespace.EDIT_MODE, "42") == "marker"

    def test_replace_keeps_expiry(self) -> None:
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.put(Namespace.PENDING, "a", 1, ttl_seconds=5)

        clock.advance(3)
        assert cache.replace(Namespace.PENDING, "a", 2) is True
        assert cache.get(Namespace.PENDING, "a") == 2
        clock.advance(2)
        assert cache.get(Namespace.PENDING, "a") is None

    def test_replace_missing_entry(self) -> None:
        cache = TTLCache(clock=FakeClock())
        assert cache.replace(Namespace.PENDING, "a", 2) is False
        assert cache.get(Namespace.PENDING, "a") is None

    def test_remove_is_idempotent(self) -> None:
        cache = TTLCache(clock=FakeClock())
        cache.put(Namespace.PENDING, "a", 1, ttl_seconds=5)
        cache.remove(Namespace.PENDING, "a")
        cache.remove(Namespace.PENDING, "a")
        assert cache.get(Namespace.PENDING, "a") is None


# ── Pending entries ───────────────────────────────────────────────────────────


class TestPendingEntries:
    def test_create_and_get(self) -> None:
        store = _make_store(FakeClock())
        entry = store.create_pending(_movement(), TS)

        assert len(entry.id) == 32
        fetched = store.get_pending(entry.id)
        assert fetched.record == _movement()
        assert fetched.origin_timestamp == TS

    def test_ids_are_unique(self) -> None:
        store = _make_store(FakeClock())
        first = store.create_pending(_movement(), TS)
        second = store.create_pending(_movement(), TS)
        assert first.id != second.id

    def test_unknown_id_is_stale(self) -> None:
        store = _make_store(FakeClock())
        with pytest.raises(StaleReferenceError) as exc_info:
            store.get_pending("deadbeef")
        assert exc_info.value.entry_id == "deadbeef"

    def test_expired_entry_is_stale(self) -> None:
        clock = FakeClock()
        store = _make_store(clock)
        entry = store.create_pending(_movement(), TS)

        clock.advance(100)
        with pytest.raises(StaleReferenceError):
            store.get_pending(entry.id)

    def test_replace_record_keeps_id_and_timestamp(self) -> None:
        store = _make_store(FakeClock())
        entry = store.create_pending(_movement("2500"), TS)

        updated = store.replace_record(entry.id, _movement("3000"))

        assert updated.id == entry.id
        assert updated.origin_timestamp == TS
        assert store.get_pending(entry.id).record.amount == Decimal("3000")

    def test_replace_record_keeps_original_expiry(self) -> None:
        clock = FakeClock()
        store = _make_store(clock)
        entry = store.create_pending(_movement(), TS)

        clock.advance(60)
        store.replace_record(entry.id, _movement("3000"))
        clock.advance(40)
        with pytest.raises(StaleReferenceError):
            store.get_pending(entry.id)

    def test_replace_expired_record(self) -> None:
        clock = FakeClock()
        store = _make_store(clock)
        entry = store.create_pending(_movement(), TS)

        clock.advance(200)
        with pytest.raises(StaleReferenceError):
            store.replace_record(entry.id, _movement("3000"))

    def test_discard(self) -> None:
        store = _make_store(FakeClock())
        entry = store.create_pending(_movement(), TS)

        store.discard_pending(entry.id)
        with pytest.raises(StaleReferenceError):
            store.get_pending(entry.id)


# ── Edit-mode markers ─────────────────────────────────────────────────────────


class TestEditMarkers:
    def test_start_edit_snapshots_record(self) -> None:
        store = _make_store(FakeClock())
        entry = store.create_pending(_movement(), TS)

        marker = store.start_edit(42, entry)

        assert marker == EditModeMarker(entry_id=entry.id, snapshot=entry.record)
        assert store.get_edit_marker(42) == marker
        assert store.get_edit_marker(43) is None

    def test_marker_has_its_own_ttl(self) -> None:
        clock = FakeClock()
        store = _make_store(clock)
        entry = store.create_pending(_movement(), TS)
        store.start_edit(42, entry)

        clock.advance(10)
        assert store.get_edit_marker(42) is None
        # The pending entry outlives the marker.
        assert store.get_pending(entry.id) is not None

    def test_clear_marker(self) -> None:
        store = _make_store(FakeClock())
        entry = store.create_pending(_movement(), TS)
        store.start_edit(42, entry)

        store.clear_edit_marker(42)
        assert store.get_edit_marker(42) is None

    def test_clear_marker_for_other_entry_is_ignored(self) -> None:
        store = _make_store(FakeClock())
        first = store.create_pending(_movement(), TS)
        second = store.create_pending(_movement(), TS)
        store.start_edit(42, second)

        store.clear_edit_marker(42, entry_id=first.id)
        assert store.get_edit_marker(42) is not None

        store.clear_edit_marker(42, entry_id=second.id)
        assert store.get_edit_marker(42) is None

    def test_new_edit_replaces_previous_marker(self) -> None:
        store = _make_store(FakeClock())
        first = store.create_pending(_movement(), TS)
        second = store.create_pending(_movement(), TS)

        store.start_edit(42, first)
        store.start_edit(42, second)

        marker = store.get_edit_marker(42)
        assert marker is not None
        assert marker.entry_id == second.id
