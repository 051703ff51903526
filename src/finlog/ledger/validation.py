"""Candidate record validation.

Provides :func:`validate_record`, which checks a
:class:`~finlog.ledger.records.CandidateRecord` against the current
taxonomy and returns a :class:`~finlog.ledger.records.ValidationResult`.

Rules run in a fixed order and stop at the first failure, so the reason
shown to the user always names the earliest problem.  Reasons are written
in Spanish because they are shown verbatim in the chat.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, assert_never

from finlog.ledger.records import (
    DATE_FORMAT,
    CandidateRecord,
    Movement,
    MovementKind,
    Taxonomy,
    ValidationResult,
)
from finlog.ledger.taxonomy import SUBCATEGORY_SEPARATOR

logger = logging.getLogger(__name__)

#: Maximum ``|amount - quantity * unit_price|`` accepted for investments.
INVESTMENT_TOLERANCE = Decimal("0.01")

MAX_INSTALLMENTS = 60

_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")

_BASE_FIELDS = ("kind", "amount", "description", "account")
_CATEGORY_FIELDS = ("category", "subcategory")
_INVESTMENT_FIELDS = ("asset", "quantity", "unit_price")

# Wire names used in rejection messages.
_WIRE_NAMES = {"kind": "type", "counter_account": "second_account"}


# ── Value parsing helpers ─────────────────────────────────────────────────────


def parse_positive_decimal(value: Any) -> Decimal | None:
    """Parse *value* as a finite, strictly positive :class:`Decimal`.

    Returns ``None`` for booleans, unparseable strings, NaN / infinity, and
    values that are zero or negative.
    """
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not number.is_finite() or number <= 0:
        return None
    return number


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_valid_date(value: str) -> bool:
    """Return ``True`` if *value* is ``dd/MM/yyyy`` and a real calendar date."""
    if not _DATE_RE.match(value):
        return False
    try:
        dt.datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        return False
    return True


def subcategory_matches(category: str, subcategory: str) -> bool:
    """Check the ``"<category> > <leaf>"`` encoding of *subcategory*."""
    parts = subcategory.split(SUBCATEGORY_SEPARATOR)
    if len(parts) != 2:
        return False
    return parts[0].strip() == category.strip() and bool(parts[1].strip())


def _required_fields(kind: MovementKind | None) -> tuple[str, ...]:
    if kind in (MovementKind.EXPENSE, MovementKind.INCOME):
        return _BASE_FIELDS + _CATEGORY_FIELDS
    if kind is not None and kind.is_investment:
        return _BASE_FIELDS + _CATEGORY_FIELDS + _INVESTMENT_FIELDS
    return _BASE_FIELDS


def _reject(reason: str, **context: Any) -> ValidationResult:
    logger.info("Rejected candidate record: %s (%s)", reason, context)
    return ValidationResult.reject(reason, **context)


# ── Validator ─────────────────────────────────────────────────────────────────


def validate_record(candidate: CandidateRecord, taxonomy: Taxonomy) -> ValidationResult:
    """Validate *candidate* against *taxonomy*.

    Args:
        candidate: The normalized extraction output.
        taxonomy: Snapshot of the configuration table.

    Returns:
        ``ValidationResult.accept(movement)`` with a typed
        :class:`Movement` when every rule passes, otherwise
        ``ValidationResult.reject(reason, ...)`` whose context names the
        offending field, the received value and the valid set.
    """
    kind = MovementKind.parse(candidate.kind)

    # 1. Required fields for the kind.
    missing = [
        _WIRE_NAMES.get(name, name)
        for name in _required_fields(kind)
        if not candidate.present(name)
    ]
    if missing:
        return _reject(
            f"Faltan campos requeridos: {', '.join(missing)}",
            field="missing",
            missing_fields=missing,
        )

    # 2. Kind.
    if kind is None:
        return _reject(
            "Tipo de registro inválido",
            field="type",
            value=candidate.kind,
            valid_values=[k.value for k in MovementKind],
        )

    # 3. Amount.
    amount = parse_positive_decimal(candidate.amount)
    if amount is None:
        return _reject(
            "Monto inválido: debe ser un número positivo",
            field="amount",
            value=str(candidate.amount),
        )

    # 4. Description.
    description = _text(candidate.description)
    if not description:
        return _reject("La descripción está vacía", field="description", value=candidate.description)

    account = _text(candidate.account)
    fields: dict[str, Any] = {
        "kind": kind,
        "amount": amount,
        "description": description,
        "account": account,
    }

    # 5. Per-kind rules.
    match kind:
        case MovementKind.TRANSFER:
            result = _check_transfer(candidate, taxonomy, fields)
        case MovementKind.INVESTMENT_BUY | MovementKind.INVESTMENT_SELL:
            result = _check_investment(candidate, taxonomy, fields)
        case MovementKind.EXPENSE | MovementKind.INCOME:
            result = _check_categorized(candidate, taxonomy, fields)
        case _:
            assert_never(kind)
    if result is not None:
        return result

    # 6. Date. A blank value means "not stated".
    date_text = _text(candidate.date)
    if date_text:
        if not is_valid_date(date_text):
            return _reject(
                "Fecha inválida: debe tener el formato dd/mm/aaaa",
                field="date",
                value=candidate.date,
            )
        fields["date"] = date_text

    # 7. Installments.
    if candidate.present("installments"):
        installments = _parse_int(candidate.installments)
        if installments is None:
            return _reject(
                "Las cuotas deben ser un número entero",
                field="installments",
                value=candidate.installments,
            )
        if not 1 <= installments <= MAX_INSTALLMENTS:
            return _reject(
                f"Las cuotas deben estar entre 1 y {MAX_INSTALLMENTS}",
                field="installments",
                value=installments,
            )
        if kind != MovementKind.EXPENSE:
            return _reject(
                "Solo los gastos pueden pagarse en cuotas",
                field="installments",
                value=installments,
                type=kind.value,
            )
        if installments == 1:
            return _reject(
                "Un pago en 1 cuota no es un pago en cuotas",
                field="installments",
                value=installments,
            )
        fields["installments"] = installments

    return ValidationResult.accept(Movement(**fields))


# ── Per-kind branches ─────────────────────────────────────────────────────────


def _check_account(account: str, taxonomy: Taxonomy, field_name: str, label: str) -> ValidationResult | None:
    if taxonomy.account_exists(account):
        return None
    return _reject(
        f"{label} inválida: {account}",
        field=field_name,
        value=account,
        valid_accounts=sorted(taxonomy.accounts),
    )


def _check_transfer(
    candidate: CandidateRecord,
    taxonomy: Taxonomy,
    fields: dict[str, Any],
) -> ValidationResult | None:
    counter = _text(candidate.counter_account)
    if not counter:
        return _reject(
            "La transferencia debe incluir la cuenta destino",
            field="second_account",
            value=candidate.counter_account,
        )

    account = fields["account"]
    for value, field_name, label in (
        (account, "account", "Cuenta origen"),
        (counter, "second_account", "Cuenta destino"),
    ):
        rejection = _check_account(value, taxonomy, field_name, label)
        if rejection is not None:
            return rejection

    if account == counter:
        return _reject(
            "Las cuentas origen y destino deben ser diferentes",
            field="second_account",
            account=account,
            second_account=counter,
        )

    fields["counter_account"] = counter
    return None


def _check_category(
    candidate: CandidateRecord,
    taxonomy: Taxonomy,
    kind: MovementKind,
    fields: dict[str, Any],
) -> ValidationResult | None:
    categories = taxonomy.categories_for(kind)
    category = _text(candidate.category)
    subcategory = _text(candidate.subcategory)

    if category not in categories:
        return _reject(
            f"Categoría inválida para {kind.value}: {category}",
            field="category",
            value=category,
            valid_categories=sorted(categories),
        )
    if subcategory not in categories[category]:
        return _reject(
            f"Subcategoría inválida para la categoría {category}: {subcategory}",
            field="subcategory",
            value=subcategory,
            valid_subcategories=list(categories[category]),
        )
    if not subcategory_matches(category, subcategory):
        return _reject(
            "Formato de subcategoría inválido: debe ser \"Categoría > Subcategoría\"",
            field="subcategory",
            value=subcategory,
            expected_format=f"{category}{SUBCATEGORY_SEPARATOR}[subcategoría]",
        )

    fields["category"] = category
    fields["subcategory"] = subcategory
    return None


def _check_categorized(
    candidate: CandidateRecord,
    taxonomy: Taxonomy,
    fields: dict[str, Any],
) -> ValidationResult | None:
    rejection = _check_category(candidate, taxonomy, fields["kind"], fields)
    if rejection is not None:
        return rejection
    return _check_account(fields["account"], taxonomy, "account", "Cuenta")


def _check_investment(
    candidate: CandidateRecord,
    taxonomy: Taxonomy,
    fields: dict[str, Any],
) -> ValidationResult | None:
    rejection = _check_category(candidate, taxonomy, fields["kind"], fields)
    if rejection is not None:
        return rejection

    asset = _text(candidate.asset)
    if not asset:
        return _reject("Falta el activo de la inversión", field="asset", value=candidate.asset)

    quantity = parse_positive_decimal(candidate.quantity)
    if quantity is None:
        return _reject(
            "Cantidad inválida: debe ser un número positivo",
            field="quantity",
            value=str(candidate.quantity),
        )

    unit_price = parse_positive_decimal(candidate.unit_price)
    if unit_price is None:
        return _reject(
            "Precio unitario inválido: debe ser un número positivo",
            field="unit_price",
            value=str(candidate.unit_price),
        )

    expected = quantity * unit_price
    if abs(fields["amount"] - expected) > INVESTMENT_TOLERANCE:
        return _reject(
            "El monto no coincide con cantidad × precio unitario",
            field="amount",
            value=str(fields["amount"]),
            expected=str(expected),
        )

    rejection = _check_account(fields["account"], taxonomy, "account", "Cuenta")
    if rejection is not None:
        return rejection

    fields.update(asset=asset, quantity=quantity, unit_price=unit_price)
    return None
