"""Display formatter for movements.

Converts a :class:`~finlog.ledger.records.Movement` into the Telegram HTML
text shown in confirmation prompts and result messages.  Pure functions,
no I/O.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from html import escape
from typing import assert_never

from finlog.ledger.records import Movement, MovementKind

_CENTS = Decimal("0.01")

_KIND_HEADERS: dict[MovementKind, str] = {
    MovementKind.EXPENSE: "\U0001f4b8 <b>Gasto</b>",
    MovementKind.INCOME: "\U0001f4b0 <b>Ingreso</b>",
    MovementKind.TRANSFER: "\U0001f504 <b>Transferencia</b>",
    MovementKind.INVESTMENT_BUY: "\U0001f4c8 <b>Compra de inversión</b>",
    MovementKind.INVESTMENT_SELL: "\U0001f4c9 <b>Venta de inversión</b>",
}


# ── Currency ──────────────────────────────────────────────────────────────────


def format_currency(value: Decimal | int | float | str) -> str:
    """Format *value* as ``$ 1.234,56`` (Argentine separators, 2 decimals).

    Negative values are rendered with a leading minus: ``-$ 1.234,56``.
    """
    amount = Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    # Format with US separators, then swap them.
    us = f"{abs(amount):,.2f}"
    local = us.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}$ {local}"


def parse_currency(text: str) -> Decimal:
    """Parse text produced by :func:`format_currency` back to a Decimal.

    Raises:
        ValueError: If *text* is not a formatted amount.
    """
    cleaned = text.strip()
    negative = cleaned.startswith("-")
    cleaned = cleaned.lstrip("-").strip().removeprefix("$").strip()
    cleaned = cleaned.replace(".", "").replace(",", ".")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ValueError(f"Not a currency amount: {text!r}") from exc
    amount = amount.quantize(_CENTS, rounding=ROUND_HALF_UP)
    return -amount if negative else amount


def format_quantity(value: Decimal) -> str:
    """Render a quantity without trailing zeros (``1.50000000`` → ``1,5``)."""
    text = format(value.normalize(), "f")
    return text.replace(".", ",")


# ── Movements ─────────────────────────────────────────────────────────────────


def installments_summary(movement: Movement) -> str:
    """Return ``" (N cuotas de $ X c/u)"`` or ``""`` for a single payment."""
    count = movement.installments
    if not count or count <= 1:
        return ""
    return f" ({count} cuotas de {format_currency(movement.amount / count)} c/u)"


def format_movement(movement: Movement, date_str: str, prefix: str | None = None) -> str:
    """Render *movement* for a chat message.

    Args:
        movement: The movement to display.
        date_str: ``dd/MM/yyyy`` date to show when the movement states none
            (usually the originating message date).
        prefix: Optional first line (e.g. "Registrado" or "Cancelado").

    Returns:
        An HTML-formatted string suitable for ``parse_mode=HTML``.
    """
    lines: list[str] = []
    if prefix:
        lines.append(prefix)
    lines.append(_KIND_HEADERS[movement.kind])
    lines.append(f"\U0001f4b5 {format_currency(movement.amount)}")
    lines.append(f"\U0001f4dd {escape(movement.description)}")

    match movement.kind:
        case MovementKind.TRANSFER:
            lines.append(f"\U0001f4e4 Origen: {escape(movement.account)}")
            lines.append(f"\U0001f4e5 Destino: {escape(movement.counter_account or '')}")
        case MovementKind.EXPENSE | MovementKind.INCOME:
            lines.append(f"\U0001f3f7️ {escape(movement.subcategory or '')}")
            lines.append(
                f"\U0001f4b3 {escape(movement.account)}{installments_summary(movement)}"
            )
        case MovementKind.INVESTMENT_BUY | MovementKind.INVESTMENT_SELL:
            lines.append(f"\U0001f3f7️ {escape(movement.subcategory or '')}")
            lines.append(
                f"\U0001f4ca {escape(movement.asset or '')}: "
                f"{format_quantity(movement.quantity or Decimal(0))} × "
                f"{format_currency(movement.unit_price or 0)}"
            )
            lines.append(f"\U0001f4b3 {escape(movement.account)}")
        case _:
            assert_never(movement.kind)

    lines.append(f"\U0001f4c5 {escape(movement.date or date_str)}")
    return "\n".join(lines)
