"""Exception hierarchy shared by the agent, ledger and bot layers.

A rejected candidate record is *not* an exception; see
:class:`~finlog.ledger.records.ValidationResult`.
"""

from __future__ import annotations


class FinlogError(Exception):
    """Base class for all finlog errors."""


class ConfigError(FinlogError):
    """The taxonomy configuration table is missing or malformed."""


class ExtractionError(FinlogError):
    """The extraction LLM failed or returned something that is not JSON.

    Attributes:
        raw: The raw reply text (if any), kept for the error log.
    """

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class StaleReferenceError(FinlogError):
    """A callback referenced a pending entry or edit marker that expired."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Pending entry {entry_id!r} is no longer available")
        self.entry_id = entry_id


class LedgerError(FinlogError):
    """Appending rows to the ledger failed."""
