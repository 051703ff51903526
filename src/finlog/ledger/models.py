"""SQLAlchemy ORM models for the finlog database.

The ``configuracion`` and ``ledger_rows`` tables mirror the two sheets of
the spreadsheet the bot originally wrote to (taxonomy configuration and
"Registros").  All ledger tables use UUID primary keys, TIMESTAMPTZ
timestamps, and DECIMAL for monetary values.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Date, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Shared declarative base for all finlog models."""


# ── Configuration ─────────────────────────────────────────────────────────────


class ConfigRow(Base):
    """One row of the taxonomy configuration table.

    A row may describe a category/subcategory pair (``tipo`` is ``Gastos``,
    ``Ingresos`` or ``Inversiones``), an account, or both.  When
    ``cuenta_asociada`` is set, postings to ``cuenta`` are redirected to it.
    """

    __tablename__ = "configuracion"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tipo: Mapped[str | None] = mapped_column(Text, nullable=True)
    categoria: Mapped[str | None] = mapped_column(Text, nullable=True)
    subcategoria: Mapped[str | None] = mapped_column(Text, nullable=True)
    cuenta: Mapped[str | None] = mapped_column(Text, nullable=True)
    cuenta_asociada: Mapped[str | None] = mapped_column(Text, nullable=True)


# ── Ledger ────────────────────────────────────────────────────────────────────


class LedgerRowRecord(Base):
    """Append-only ledger line (expense / income / transfer leg / investment)."""

    __tablename__ = "ledger_rows"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    signed_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    account: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    category: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    subcategory: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    description: Mapped[str] = mapped_column(Text, nullable=False)
    movement_type: Mapped[str] = mapped_column(Text, nullable=False)
    currency: Mapped[str] = mapped_column(Text, nullable=False, server_default="ARS")
    asset: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())


# ── Observability tables ──────────────────────────────────────────────────────


class LLMCall(Base):
    """Logging for every LLM invocation (local and paid fallback)."""

    __tablename__ = "llm_calls"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str] = mapped_column(Text, nullable=False)
    input_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_fallback: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    cost_usd: Mapped[Decimal | None] = mapped_column(Numeric(8, 6), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())


class ErrorLog(Base):
    """Persisted error log for post-mortem debugging.

    Written by :class:`~finlog.error_sink.ErrorSink`: validation rejections
    (with the offending field and the valid set) as well as caught
    exceptions with their traceback.
    """

    __tablename__ = "error_log"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    chat_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    function_name: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    traceback: Mapped[str | None] = mapped_column(Text, nullable=True)
    context: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
