"""Account balances derived from the ledger.

Provides :func:`get_account_balances`, which sums the signed amounts of
every ledger row per account.  Balances are always derived, never stored.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession


class SignedRow(Protocol):
    account: str
    signed_amount: Decimal


def compute_account_balances(rows: Iterable[SignedRow]) -> dict[str, Decimal]:
    """Sum ``signed_amount`` per account.

    Returns:
        Mapping of account name to balance, sorted by account name.
    """
    totals: dict[str, Decimal] = {}
    for row in rows:
        totals[row.account] = totals.get(row.account, Decimal("0")) + row.signed_amount
    return dict(sorted(totals.items()))


async def get_account_balances(
    session: AsyncSession,
    rows: list[SignedRow] | None = None,
) -> dict[str, Decimal]:
    """Derive per-account balances.

    Args:
        session: Async database session (used only if *rows* is ``None``).
        rows: Pre-fetched ledger rows (optional; if ``None`` they are loaded
            via :func:`~finlog.ledger.repository.read_ledger_rows`).
    """
    if rows is None:
        from finlog.ledger.repository import read_ledger_rows

        rows = await read_ledger_rows(session)

    return compute_account_balances(rows)
