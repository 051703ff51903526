"""Database repository for ledger operations.

Provides async functions over the tabular store:

- reading the taxonomy configuration table,
- appending ledger rows and reading them back (newest first),
- logging LLM calls and errors.

All functions take the caller's :class:`AsyncSession`; the caller manages
commit / rollback.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finlog.ledger.models import ConfigRow, ErrorLog, LedgerRowRecord, LLMCall
from finlog.ledger.records import LedgerRow


# ── Configuration table ──────────────────────────────────────────────────────


async def read_config_rows(session: AsyncSession) -> list[ConfigRow]:
    """Return every row of the ``configuracion`` table in insertion order."""
    result = await session.execute(select(ConfigRow).order_by(ConfigRow.id))
    return list(result.scalars().all())


# ── Ledger rows ──────────────────────────────────────────────────────────────


async def append_ledger_rows(
    session: AsyncSession,
    rows: list[LedgerRow],
) -> list[LedgerRowRecord]:
    """Append *rows* to the ``ledger_rows`` table.

    All rows are added before a single flush, so they land in the same
    transaction: a transfer pair or an installment series is written
    together or not at all.

    Args:
        session: Active async database session (caller manages commit).
        rows: Ledger rows produced by the ledger writer.

    Returns:
        The newly created :class:`LedgerRowRecord` instances.
    """
    records = [
        LedgerRowRecord(
            event_date=row.date,
            signed_amount=row.signed_amount,
            account=row.account,
            category=row.category,
            subcategory=row.subcategory,
            description=row.description,
            movement_type=row.movement_type,
            currency=row.currency,
            asset=row.asset,
            quantity=row.quantity,
            unit_price=row.unit_price,
        )
        for row in rows
    ]
    session.add_all(records)
    await session.flush()
    return records


async def read_ledger_rows(session: AsyncSession) -> list[LedgerRowRecord]:
    """Return every ledger row ordered by date descending.

    Newest-first is the order the ledger is always presented in; rows
    sharing a date keep their insertion order reversed.
    """
    stmt = select(LedgerRowRecord).order_by(
        LedgerRowRecord.event_date.desc(),
        LedgerRowRecord.created_at.desc(),
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ── LLM call logging ─────────────────────────────────────────────────────────


async def save_llm_call(
    session: AsyncSession,
    *,
    provider: str,
    model: str,
    input_tokens: int | None = None,
    output_tokens: int | None = None,
    latency_ms: int | None = None,
    is_fallback: bool = False,
    cost_usd: Decimal | None = None,
) -> LLMCall:
    """Log an LLM invocation to the ``llm_calls`` table.

    Every LLM call, local or paid, is recorded for cost tracking,
    latency monitoring, and fallback frequency analysis.
    """
    llm_call = LLMCall(
        provider=provider,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        latency_ms=latency_ms,
        is_fallback=is_fallback,
        cost_usd=cost_usd,
    )
    session.add(llm_call)
    await session.flush()
    return llm_call


# ── Error logging ────────────────────────────────────────────────────────────


async def save_error(
    session: AsyncSession,
    *,
    function_name: str,
    message: str,
    traceback_str: str | None = None,
    context: dict[str, Any] | None = None,
    chat_id: int | None = None,
) -> ErrorLog:
    """Persist an error record for later debugging.

    Args:
        session: Active async database session (caller manages commit).
        function_name: Short label for the failure site (e.g. ``"validate_record"``).
        message: Human-readable error message.
        traceback_str: Full Python traceback, for caught exceptions.
        context: JSON-serializable diagnostic details.
        chat_id: Telegram chat the failure belongs to, if known.

    Returns:
        The newly created :class:`ErrorLog` instance.
    """
    row = ErrorLog(
        chat_id=chat_id,
        function_name=function_name,
        message=message,
        traceback=traceback_str,
        context=context,
    )
    session.add(row)
    await session.flush()
    return row
