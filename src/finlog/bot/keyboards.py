"""Inline keyboard builders for Telegram bot interactions.

The orchestrator describes buttons as :class:`~finlog.agent.orchestrator.Choice`
objects; this module lays them out as aiogram markup.
"""

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from finlog.agent.orchestrator import Choice


def choices_keyboard(choices: list[Choice]) -> InlineKeyboardMarkup:
    """Build an inline keyboard with all *choices* in a single row.

    Args:
        choices: Buttons in display order, e.g. Confirm / Edit / Cancel.

    Returns:
        An :class:`InlineKeyboardMarkup` with one row of buttons.
    """
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text=choice.label, callback_data=choice.callback_data)
                for choice in choices
            ]
        ]
    )
