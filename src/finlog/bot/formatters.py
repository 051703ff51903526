"""Message formatters for command replies.

Converts taxonomy listings and account balances into Telegram-friendly
HTML strings.  Movement rendering lives in :mod:`finlog.ledger.display`.
"""

from __future__ import annotations

from decimal import Decimal
from html import escape
from typing import Iterable

from finlog.ledger.display import format_currency
from finlog.ledger.records import CategoryMap
from finlog.ledger.taxonomy import command_slug


def _bullets(items: Iterable[str], bold: bool = False) -> str:
    if bold:
        return "\n".join(f"• <b>{escape(item)}</b>" for item in items)
    return "\n".join(f"• {escape(item)}" for item in items)


def format_category_list(title: str, categories: CategoryMap) -> str:
    """List category names under a bold *title*."""
    if not categories:
        return f"<b>{title}:</b>\n<i>No hay categorías configuradas.</i>"
    return f"<b>{title}:</b>\n{_bullets(categories, bold=True)}"


def format_subcategory_index(categories: CategoryMap) -> str:
    """List one clickable ``/ls_<categoría>`` command per category."""
    commands = "\n".join(f"• /ls_{command_slug(category)}" for category in categories)
    return (
        "\U0001f4cb <b>Categorías disponibles:</b>\n\n"
        f"{commands}\n\n"
        "<i>Tocá una categoría para ver sus subcategorías</i>"
    )


def format_subcategories(category: str, subcategories: Iterable[str]) -> str:
    """List the full ``"Categoría > Sub"`` names of *category*."""
    return (
        f"\U0001f4cb <b>Subcategorías de {escape(category)}:</b>\n\n"
        f"{_bullets(subcategories)}"
    )


def format_category_not_found(search: str, categories: CategoryMap) -> str:
    return (
        f"❌ Categoría \"{escape(search)}\" no encontrada.\n\n"
        f"Categorías disponibles:\n{_bullets(categories)}"
    )


def format_accounts(accounts: Iterable[str]) -> str:
    """List the configured accounts, sorted by name."""
    names = sorted(accounts)
    if not names:
        return "\U0001f4b3 <i>No hay cuentas configuradas.</i>"
    return f"\U0001f4b3 <b>Cuentas disponibles:</b>\n\n{_bullets(names)}"


def format_balances(balances: dict[str, Decimal]) -> str:
    """Format per-account balances with a grand total.

    Args:
        balances: Account name → signed balance.

    Returns:
        An HTML-formatted string suitable for ``parse_mode=HTML``.
    """
    if not balances:
        return "<i>Todavía no hay movimientos registrados.</i>"

    lines = ["\U0001f4ca <b>Saldos por cuenta:</b>", ""]
    for account, balance in balances.items():
        lines.append(f"• {escape(account)}: <b>{format_currency(balance)}</b>")
    total = sum(balances.values(), Decimal("0"))
    lines.append("")
    lines.append(f"Total: <b>{format_currency(total)}</b>")
    return "\n".join(lines)
