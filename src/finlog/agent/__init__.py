"""Conversation layer: extraction, pending records and confirmation flow.

Provides entry points for the bot handler layer:

- :func:`process_message`: send a text or voice message through the
  orchestrator (extract → validate → confirm prompt, or apply an edit).
- :func:`process_callback`: handle inline keyboard button presses
  (confirm / edit / cancel).

Both functions return an :class:`~finlog.agent.orchestrator.OrchestratorResult`.
"""

from __future__ import annotations

import datetime as dt
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from finlog.agent.extraction import Extractor, VoiceNote
from finlog.agent.llm_client import FallbackLLMClient, LLMClient, OpenAITranscriber
from finlog.agent.orchestrator import Orchestrator, OrchestratorResult

logger = logging.getLogger(__name__)

# Module-level LLM client, lazily initialized.
_llm_client: LLMClient | None = None

# Module-level orchestrator, lazily initialized.
_orchestrator: Orchestrator | None = None


def get_llm_client() -> LLMClient:
    """Return the module-level LLM client, creating it on first call."""
    global _llm_client
    if _llm_client is None:
        _llm_client = FallbackLLMClient()
    return _llm_client


def set_llm_client(client: LLMClient) -> None:
    """Override the module-level LLM client (useful for testing)."""
    global _llm_client, _orchestrator
    _llm_client = client
    # Reset orchestrator so it picks up the new client.
    _orchestrator = None


def get_orchestrator() -> Orchestrator:
    """Return the module-level orchestrator, creating it on first call."""
    global _orchestrator
    if _orchestrator is None:
        extractor = Extractor(get_llm_client(), OpenAITranscriber())
        _orchestrator = Orchestrator(extractor)
    return _orchestrator


def set_orchestrator(orch: Orchestrator | None) -> None:
    """Override the module-level orchestrator (useful for testing)."""
    global _orchestrator
    _orchestrator = orch


async def process_message(
    chat_id: int,
    content: str | VoiceNote,
    session: AsyncSession,
    message_date: dt.datetime,
) -> OrchestratorResult:
    """Send a user message through the orchestrator.

    This is the entry point called by the bot text and voice handlers.
    """
    return await get_orchestrator().handle_message(
        chat_id=chat_id,
        content=content,
        session=session,
        message_date=message_date,
    )


async def process_callback(
    chat_id: int,
    callback_data: str,
    session: AsyncSession,
) -> OrchestratorResult:
    """Handle an inline keyboard callback (Confirm / Edit / Cancel)."""
    return await get_orchestrator().handle_callback(
        chat_id=chat_id,
        callback_data=callback_data,
        session=session,
    )
