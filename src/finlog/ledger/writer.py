"""Ledger writer: turns an accepted movement into ledger rows.

:func:`build_ledger_rows` is pure and holds every posting rule (sign
conventions, transfer pairing, installment expansion, account-association
substitution).  :func:`post_movement` resolves the posting date and
appends the rows through the repository.
"""

from __future__ import annotations

import calendar
import datetime as dt
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, assert_never
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from finlog.config import settings
from finlog.errors import LedgerError
from finlog.ledger import repository
from finlog.ledger.records import (
    DATE_FORMAT,
    MOVEMENT_TYPE_LABELS,
    LedgerRow,
    Movement,
    MovementKind,
    Taxonomy,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def add_months(base: dt.date, months: int) -> dt.date:
    """Return *base* moved forward by *months*, clamped to the month end.

    >>> add_months(dt.date(2024, 1, 31), 1)
    datetime.date(2024, 2, 29)
    """
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def local_date(timestamp: dt.datetime, tz: ZoneInfo | None = None) -> dt.date:
    """Convert a message *timestamp* to a date in the configured timezone.

    Naive timestamps are taken as UTC, which is what Telegram sends.
    """
    tz = tz or ZoneInfo(settings.timezone)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=dt.timezone.utc)
    return timestamp.astimezone(tz).date()


def build_ledger_rows(
    movement: Movement,
    fallback_date: dt.date,
    account_associations: Mapping[str, str],
    currency: str = "ARS",
) -> list[LedgerRow]:
    """Expand *movement* into the rows to append to the ledger.

    Args:
        movement: A validated movement.
        fallback_date: Date used when the movement states none.
        account_associations: Account → associated account map; applies to
            every kind except transfers.
        currency: Currency code written on each row.

    Returns:
        Two rows for a transfer, N rows for an expense in N installments,
        one row otherwise.
    """
    label = MOVEMENT_TYPE_LABELS[movement.kind]
    posting_date = (
        dt.datetime.strptime(movement.date, DATE_FORMAT).date()
        if movement.date
        else fallback_date
    )

    match movement.kind:
        case MovementKind.TRANSFER:
            source, target = movement.account, movement.counter_account or ""
            return [
                LedgerRow(
                    date=posting_date,
                    signed_amount=-movement.amount,
                    account=source,
                    description=f"Transferencia a {target}",
                    movement_type=label,
                    currency=currency,
                ),
                LedgerRow(
                    date=posting_date,
                    signed_amount=movement.amount,
                    account=target,
                    description=f"Transferencia de {source}",
                    movement_type=label,
                    currency=currency,
                ),
            ]
        case MovementKind.EXPENSE | MovementKind.INCOME:
            sign = -1 if movement.kind == MovementKind.EXPENSE else 1
        case MovementKind.INVESTMENT_BUY:
            sign = -1
        case MovementKind.INVESTMENT_SELL:
            sign = 1
        case _:
            assert_never(movement.kind)

    account = account_associations.get(movement.account, movement.account)
    base = LedgerRow(
        date=posting_date,
        signed_amount=sign * movement.amount,
        account=account,
        category=movement.category or "",
        subcategory=movement.subcategory or "",
        description=movement.description,
        movement_type=label,
        currency=currency,
        asset=movement.asset,
        quantity=movement.quantity,
        unit_price=movement.unit_price,
    )

    count = movement.installments or 1
    if movement.kind != MovementKind.EXPENSE or count <= 1:
        return [base]

    share = (movement.amount / count).quantize(CENTS, rounding=ROUND_HALF_UP)
    return [
        base.model_copy(update={
            "date": add_months(posting_date, i),
            "signed_amount": -share,
            "description": f"{movement.description} (Cuota {i + 1}/{count})",
        })
        for i in range(count)
    ]


async def post_movement(
    session: AsyncSession,
    movement: Movement,
    fallback_timestamp: dt.datetime,
    taxonomy: Taxonomy,
) -> list[LedgerRow]:
    """Append the rows for *movement* to the ledger.

    All rows are flushed together, so they commit or roll back as one unit
    with the caller's transaction.

    Raises:
        LedgerError: If the ledger table is missing or the write fails.
    """
    rows = build_ledger_rows(
        movement,
        local_date(fallback_timestamp),
        taxonomy.account_associations,
        currency=settings.currency,
    )
    try:
        await repository.append_ledger_rows(session, rows)
    except SQLAlchemyError as exc:
        raise LedgerError(f"Could not append {len(rows)} ledger row(s): {exc}") from exc

    logger.info(
        "Posted %s movement as %d row(s) dated %s",
        movement.kind.value, len(rows), rows[0].date_display,
    )
    return rows
