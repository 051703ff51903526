"""Prompts and templates for the extraction LLM.

The prompts are written in Spanish, the language users write and speak to
the bot in.  Both prompts list the current taxonomy (accounts and the
category → subcategory tree) so the model can only pick configured values,
and both ask for a single bare JSON object.

- :func:`build_extraction_prompt`: turn a new message into a movement.
- :func:`build_edit_prompt`: apply a correction to a pending movement and
  return the full replacement.
"""

from __future__ import annotations

import json
from typing import Any

from finlog.ledger.records import NO_ACCOUNT, CategoryMap, Taxonomy
from finlog.ledger.taxonomy import SUBCATEGORY_SEPARATOR

# ── Shared sections ───────────────────────────────────────────────────────────

MOVEMENT_TYPES_SECTION = """\
### TIPOS DE REGISTRO:
- **gasto**: dinero que sale de una cuenta
- **ingreso**: dinero que entra a una cuenta
- **transferencia**: dinero que se mueve entre dos cuentas propias
- **inversión**: compra de un activo (acciones, bonos, cripto, FCI)
- **venta_inversión**: venta de un activo\
"""

FIELDS_SECTION = """\
### CAMPOS:
- **type**: "gasto", "ingreso", "transferencia", "inversión" o "venta_inversión"
- **amount**: número positivo, sin símbolos de moneda
- **description**: descripción clara del movimiento
- **category**: categoría principal (no para transferencias)
- **subcategory**: subcategoría en formato "Categoría > Subcategoría"
- **account**: cuenta principal del movimiento
- **second_account**: (solo transferencias) cuenta destino
- **asset**, **quantity**, **unit_price**: (solo inversiones) activo, cantidad \
y precio unitario; amount debe ser quantity × unit_price
- **date**: formato dd/MM/yyyy (solo si se menciona explícitamente)
- **installments**: número de cuotas (solo gastos, solo si se menciona)\
"""

RULES_SECTION = """\
### REGLAS:
- Si menciona "ayer", "el lunes", "hace 3 días", etc. → calcular la fecha exacta
- Si NO menciona fecha → NO incluir el campo "date"
- La subcategoría debe existir en las listas y devolverse como \
"Categoría > Subcategoría". Ejemplo: "Nafta" de "Auto" → "Auto > Nafta"
- Las cuotas deben ser un número entero mayor a 1\
"""

RESPONSE_SECTION = """\
### RESPUESTA REQUERIDA:
Devuelve ÚNICAMENTE un objeto JSON válido con los campos extraídos, sin texto \
adicional.\
"""


def _format_categories(title: str, categories: CategoryMap) -> str:
    """Render one category tree as a markdown list of leaves."""
    if not categories:
        return f"### {title}:\n(ninguna configurada)"
    blocks: list[str] = []
    for category, subcategories in categories.items():
        leaves = "\n".join(
            f"  - {sub.split(SUBCATEGORY_SEPARATOR, 1)[-1]}" for sub in subcategories
        )
        blocks.append(f"**{category}:**\n{leaves}")
    return f"### {title}:\n" + "\n\n".join(blocks)


def format_taxonomy_sections(taxonomy: Taxonomy) -> str:
    """Render accounts and all category trees for inclusion in a prompt."""
    accounts = ", ".join(sorted(taxonomy.accounts)) or "(ninguna configurada)"
    return "\n\n".join([
        f"### CUENTAS DISPONIBLES:\n{accounts}\n"
        f"- Si no especifica cuenta → usar \"{NO_ACCOUNT}\"",
        _format_categories("CATEGORÍAS DE GASTOS", taxonomy.expense_categories),
        _format_categories("CATEGORÍAS DE INGRESOS", taxonomy.income_categories),
        _format_categories("CATEGORÍAS DE INVERSIONES", taxonomy.investment_categories),
    ])


# ── Prompt builders ───────────────────────────────────────────────────────────


def build_extraction_prompt(taxonomy: Taxonomy, today: str) -> str:
    """Build the system prompt for extracting a new movement.

    Args:
        taxonomy: Current taxonomy snapshot.
        today: Current date as ``dd/MM/yyyy``, for relative date references.
    """
    return "\n\n".join([
        f"### CONTEXTO:\nHoy es {today}. Analiza el mensaje del usuario para "
        "extraer información financiera.",
        "### TAREA:\nExtrae y estructura el registro financiero en formato JSON.",
        MOVEMENT_TYPES_SECTION,
        FIELDS_SECTION,
        format_taxonomy_sections(taxonomy),
        RULES_SECTION,
        RESPONSE_SECTION,
    ])


def build_edit_prompt(taxonomy: Taxonomy, today: str, current: dict[str, Any]) -> str:
    """Build the system prompt for applying a correction to a movement.

    The model receives the current record and must return the complete
    record with only the requested changes applied.

    Args:
        taxonomy: Current taxonomy snapshot.
        today: Current date as ``dd/MM/yyyy``.
        current: The pending movement in wire format.
    """
    record = json.dumps(current, ensure_ascii=False, indent=2)
    return "\n\n".join([
        f"### CONTEXTO:\nHoy es {today}. El usuario quiere corregir un registro "
        "financiero que todavía no confirmó.",
        f"### REGISTRO ACTUAL:\n{record}",
        "### TAREA:\nAplica la corrección que indica el mensaje del usuario y "
        "devuelve el registro COMPLETO. Conserva sin cambios todos los campos "
        "que el usuario no mencione.",
        MOVEMENT_TYPES_SECTION,
        FIELDS_SECTION,
        format_taxonomy_sections(taxonomy),
        RULES_SECTION,
        RESPONSE_SECTION,
    ])
