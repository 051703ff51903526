"""Initial schema: configuration, ledger rows and observability tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    # ── configuracion ─────────────────────────────────────────────────
    op.create_table(
        "configuracion",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tipo", sa.Text, nullable=True),
        sa.Column("categoria", sa.Text, nullable=True),
        sa.Column("subcategoria", sa.Text, nullable=True),
        sa.Column("cuenta", sa.Text, nullable=True),
        sa.Column("cuenta_asociada", sa.Text, nullable=True),
    )

    # ── ledger_rows ───────────────────────────────────────────────────
    op.create_table(
        "ledger_rows",
        _uuid_pk(),
        sa.Column("event_date", sa.Date, nullable=False),
        sa.Column("signed_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("account", sa.Text, nullable=False),
        sa.Column("category", sa.Text, nullable=False, server_default=""),
        sa.Column("subcategory", sa.Text, nullable=False, server_default=""),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("movement_type", sa.Text, nullable=False),
        sa.Column("currency", sa.Text, nullable=False, server_default="ARS"),
        sa.Column("asset", sa.Text, nullable=True),
        sa.Column("quantity", sa.Numeric(20, 8), nullable=True),
        sa.Column("unit_price", sa.Numeric(20, 8), nullable=True),
        _created_at(),
    )
    op.create_index("ix_ledger_rows_event_date", "ledger_rows", ["event_date"])
    op.create_index("ix_ledger_rows_account", "ledger_rows", ["account"])

    # ── error_log ─────────────────────────────────────────────────────
    op.create_table(
        "error_log",
        _uuid_pk(),
        sa.Column("chat_id", sa.BigInteger, nullable=True),
        sa.Column("function_name", sa.Text, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("traceback", sa.Text, nullable=True),
        sa.Column("context", postgresql.JSONB, nullable=True),
        _created_at(),
    )

    # ── llm_calls (observability) ─────────────────────────────────────
    op.create_table(
        "llm_calls",
        _uuid_pk(),
        sa.Column("provider", sa.Text, nullable=False),
        sa.Column("model", sa.Text, nullable=False),
        sa.Column("input_tokens", sa.Integer, nullable=True),
        sa.Column("output_tokens", sa.Integer, nullable=True),
        sa.Column("latency_ms", sa.Integer, nullable=True),
        sa.Column(
            "is_fallback",
            sa.Boolean,
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("cost_usd", sa.Numeric(8, 6), nullable=True),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("llm_calls")
    op.drop_table("error_log")
    op.drop_index("ix_ledger_rows_account", table_name="ledger_rows")
    op.drop_index("ix_ledger_rows_event_date", table_name="ledger_rows")
    op.drop_table("ledger_rows")
    op.drop_table("configuracion")
