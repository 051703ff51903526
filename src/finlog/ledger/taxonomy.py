"""Taxonomy provider: accounts and categories from the configuration table.

The taxonomy is read fresh on every call and returned as an immutable
:class:`~finlog.ledger.records.Taxonomy` snapshot, so edits to the
``configuracion`` table take effect on the next message without a reload
command.
"""

from __future__ import annotations

import logging
import unicodedata
from types import MappingProxyType
from typing import Iterable, Protocol

from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from finlog.errors import ConfigError
from finlog.ledger import repository
from finlog.ledger.records import CategoryMap, Taxonomy

logger = logging.getLogger(__name__)

#: Separator between category and leaf in a full subcategory name.
SUBCATEGORY_SEPARATOR = " > "

_SECTION_BY_LABEL: dict[str, str] = {
    "gastos": "expense",
    "ingresos": "income",
    "inversiones": "investment",
}


class ConfigRowLike(Protocol):
    tipo: str | None
    categoria: str | None
    subcategoria: str | None
    cuenta: str | None
    cuenta_asociada: str | None


def _clean(value: str | None) -> str:
    return value.strip() if value else ""


def full_subcategory(category: str, subcategory: str) -> str:
    """Return *subcategory* as ``"<category> > <leaf>"``.

    Leaf-only values are prefixed with *category*.  Raises
    :class:`ConfigError` when the value already carries a prefix naming a
    different category.
    """
    if SUBCATEGORY_SEPARATOR not in subcategory:
        return f"{category}{SUBCATEGORY_SEPARATOR}{subcategory}"

    parts = subcategory.split(SUBCATEGORY_SEPARATOR)
    if len(parts) != 2 or parts[0].strip() != category or not parts[1].strip():
        raise ConfigError(
            f"Subcategory {subcategory!r} does not belong to category {category!r}"
        )
    return f"{category}{SUBCATEGORY_SEPARATOR}{parts[1].strip()}"


def build_taxonomy(rows: Iterable[ConfigRowLike]) -> Taxonomy:
    """Build a :class:`Taxonomy` from configuration rows.

    Args:
        rows: Rows of the ``configuracion`` table (ORM objects or anything
            exposing the same attributes).

    Returns:
        An immutable taxonomy snapshot.

    Raises:
        ConfigError: If a row pairs a category without a subcategory (or
            vice versa), uses an unknown ``tipo`` label, or names a
            subcategory under the wrong category.
    """
    accounts: set[str] = set()
    associations: dict[str, str] = {}
    sections: dict[str, dict[str, list[str]]] = {
        "expense": {},
        "income": {},
        "investment": {},
    }

    for index, row in enumerate(rows, start=1):
        account = _clean(row.cuenta)
        associated = _clean(row.cuenta_asociada)
        if account:
            accounts.add(account)
            if associated:
                associations[account] = associated
        elif associated:
            raise ConfigError(f"Row {index}: associated account without an account")

        category = _clean(row.categoria)
        subcategory = _clean(row.subcategoria)
        if not category and not subcategory:
            continue
        if not category or not subcategory:
            raise ConfigError(f"Row {index}: category and subcategory must be set together")

        section = _SECTION_BY_LABEL.get(_clean(row.tipo).lower())
        if section is None:
            raise ConfigError(f"Row {index}: unknown movement type {row.tipo!r}")

        leaves = sections[section].setdefault(category, [])
        full = full_subcategory(category, subcategory)
        if full not in leaves:
            leaves.append(full)

    def freeze(section: dict[str, list[str]]) -> MappingProxyType:
        return MappingProxyType({cat: tuple(subs) for cat, subs in section.items()})

    return Taxonomy(
        accounts=frozenset(accounts),
        account_associations=MappingProxyType(associations),
        expense_categories=freeze(sections["expense"]),
        income_categories=freeze(sections["income"]),
        investment_categories=freeze(sections["investment"]),
    )


async def load_taxonomy(session: AsyncSession) -> Taxonomy:
    """Read the configuration table and build a fresh taxonomy snapshot.

    Raises:
        ConfigError: If the table cannot be read or is malformed.
    """
    try:
        rows = await repository.read_config_rows(session)
    except (ProgrammingError, OperationalError) as exc:
        raise ConfigError(f"Configuration table unavailable: {exc}") from exc

    taxonomy = build_taxonomy(rows)
    logger.debug(
        "Loaded taxonomy: %d accounts, %d expense / %d income / %d investment categories",
        len(taxonomy.accounts),
        len(taxonomy.expense_categories),
        len(taxonomy.income_categories),
        len(taxonomy.investment_categories),
    )
    return taxonomy


# ── Lookups ───────────────────────────────────────────────────────────────────


def remove_diacritics(text: str) -> str:
    """Strip accents: ``"Educación"`` → ``"Educacion"``."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def find_category(search: str, categories: CategoryMap) -> str | None:
    """Return the configured category matching *search*.

    Matching ignores case and accents, so ``"educacion"`` finds
    ``"Educación"``.
    """
    wanted = remove_diacritics(search.strip().lower())
    for category in categories:
        if remove_diacritics(category.lower()) == wanted:
            return category
    return None


def command_slug(category: str) -> str:
    """Category name as used in ``/ls_<slug>`` commands (no accents, ``_`` for spaces)."""
    return "_".join(remove_diacritics(category).split())
