"""Domain models for movements, ledger rows and the taxonomy snapshot.

Provides:

- :class:`MovementKind`: the closed set of movement kinds.
- :class:`CandidateRecord`: loosely typed output of the extraction step.
- :class:`Movement`: a candidate that passed validation (typed values).
- :class:`ValidationResult`: accept/reject outcome of the validator.
- :class:`LedgerRow`: one row appended to the ledger.
- :class:`Taxonomy`: immutable snapshot of accounts and categories.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

#: Sentinel account the LLM uses when the user did not name one.
NO_ACCOUNT = "No definido"

DATE_FORMAT = "%d/%m/%Y"


class MovementKind(StrEnum):
    """Kinds of movement a user can report."""

    EXPENSE = "gasto"
    INCOME = "ingreso"
    TRANSFER = "transferencia"
    INVESTMENT_BUY = "inversión"
    INVESTMENT_SELL = "venta_inversión"

    @classmethod
    def parse(cls, value: Any) -> MovementKind | None:
        """Return the kind for *value*, accepting unaccented spellings."""
        if not isinstance(value, str):
            return None
        cleaned = value.strip().lower()
        return _KIND_ALIASES.get(cleaned)

    @property
    def is_investment(self) -> bool:
        return self in (MovementKind.INVESTMENT_BUY, MovementKind.INVESTMENT_SELL)


_KIND_ALIASES: dict[str, MovementKind] = {kind.value: kind for kind in MovementKind}
_KIND_ALIASES.update({
    "inversion": MovementKind.INVESTMENT_BUY,
    "venta_inversion": MovementKind.INVESTMENT_SELL,
})


# Column I of the original sheet: the movement type label per ledger row.
MOVEMENT_TYPE_LABELS: dict[MovementKind, str] = {
    MovementKind.EXPENSE: "Gastos",
    MovementKind.INCOME: "Ingresos",
    MovementKind.TRANSFER: "Transferencias",
    MovementKind.INVESTMENT_BUY: "Inversiones",
    MovementKind.INVESTMENT_SELL: "Inversiones",
}


# ── Extraction output ─────────────────────────────────────────────────────────


class CandidateRecord(BaseModel):
    """A movement as returned by the extraction LLM, before validation.

    Values are kept exactly as received (strings, numbers, ``None``) so the
    validator can report precisely what was wrong with them.  Wire keys
    follow the extraction prompt (``type``, ``second_account``,
    ``unit_price``); Python names are accepted too.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: Any = Field(default=None, alias="type")
    amount: Any = None
    description: Any = None
    category: Any = None
    subcategory: Any = None
    account: Any = None
    counter_account: Any = Field(default=None, alias="second_account")
    asset: Any = None
    quantity: Any = None
    unit_price: Any = None
    date: Any = None
    installments: Any = None

    @classmethod
    def from_parsed(cls, data: dict[str, Any]) -> CandidateRecord:
        """Build a :class:`CandidateRecord` from an LLM-parsed dict.

        Unknown keys are silently ignored so the LLM can return extra fields
        without breaking things.
        """
        return cls.model_validate(data)

    def present(self, field_name: str) -> bool:
        """Return ``True`` if *field_name* was supplied (not ``None``)."""
        return getattr(self, field_name) is not None


# ── Validated movement ────────────────────────────────────────────────────────


class Movement(BaseModel):
    """A movement that passed validation and may be cached or posted."""

    model_config = ConfigDict(frozen=True)

    kind: MovementKind
    amount: Decimal = Field(description="Absolute magnitude, always positive.")
    description: str
    account: str
    category: str | None = None
    subcategory: str | None = None
    counter_account: str | None = None
    asset: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    date: str | None = Field(default=None, description="dd/MM/yyyy, if stated.")
    installments: int | None = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize back to the extraction wire format (for edit prompts)."""
        wire: dict[str, Any] = {
            "type": self.kind.value,
            "amount": str(self.amount),
            "description": self.description,
            "category": self.category,
            "subcategory": self.subcategory,
            "account": self.account,
            "second_account": self.counter_account,
            "asset": self.asset,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "unit_price": str(self.unit_price) if self.unit_price is not None else None,
            "date": self.date,
            "installments": self.installments,
        }
        return {k: v for k, v in wire.items() if v is not None}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of :func:`~finlog.ledger.validation.validate_record`.

    ``context`` carries diagnostic details for rejections (offending field,
    received value, snapshot of the valid set) for the error sink.
    """

    valid: bool
    reason: str | None = None
    movement: Movement | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def accept(cls, movement: Movement) -> ValidationResult:
        return cls(valid=True, movement=movement)

    @classmethod
    def reject(cls, reason: str, **context: Any) -> ValidationResult:
        return cls(valid=False, reason=reason, context=context)


# ── Ledger rows ───────────────────────────────────────────────────────────────


class LedgerRow(BaseModel):
    """One append-only line of the ledger."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    signed_amount: Decimal
    account: str
    category: str = ""
    subcategory: str = ""
    description: str
    movement_type: str
    currency: str = "ARS"
    asset: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None

    @property
    def date_display(self) -> str:
        return self.date.strftime(DATE_FORMAT)


# ── Taxonomy snapshot ─────────────────────────────────────────────────────────


CategoryMap = Mapping[str, tuple[str, ...]]


@dataclass(frozen=True)
class Taxonomy:
    """Read-only snapshot of the configuration table.

    Category maps go from category name to the tuple of its subcategories,
    each encoded as ``"<category> > <leaf>"``.
    """

    accounts: frozenset[str] = frozenset()
    account_associations: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}),
    )
    expense_categories: CategoryMap = field(default_factory=lambda: MappingProxyType({}))
    income_categories: CategoryMap = field(default_factory=lambda: MappingProxyType({}))
    investment_categories: CategoryMap = field(default_factory=lambda: MappingProxyType({}))

    def categories_for(self, kind: MovementKind) -> CategoryMap:
        """Return the category map that applies to *kind*.

        Transfers have no categories and get an empty map.
        """
        if kind == MovementKind.EXPENSE:
            return self.expense_categories
        if kind == MovementKind.INCOME:
            return self.income_categories
        if kind.is_investment:
            return self.investment_categories
        return MappingProxyType({})

    def account_exists(self, account: str) -> bool:
        """``True`` for configured accounts and the ``"No definido"`` sentinel."""
        return account == NO_ACCOUNT or account in self.accounts
