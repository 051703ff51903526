"""Extraction: turn a chat message into a candidate record via the LLM.

:class:`Extractor` sends the message (text, or a voice note after
transcription) together with the taxonomy-aware prompt, strips markdown
fences from the reply and parses it as JSON.  :func:`normalize_extraction`
then reduces the various reply shapes the model produces to a single
:class:`~finlog.ledger.records.CandidateRecord`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from finlog.agent.llm_client import ChatMessage, LLMClient, LLMResponse, Transcriber
from finlog.agent.prompts import build_edit_prompt, build_extraction_prompt
from finlog.errors import ExtractionError
from finlog.ledger.records import CandidateRecord, Movement, Taxonomy

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

# Keys whose presence marks a bare object as a movement.
_MARKER_KEYS = ("type", "amount", "description")


@dataclass(frozen=True)
class VoiceNote:
    """Raw audio of a voice message."""

    data: bytes
    mime_type: str = "audio/ogg"


@dataclass
class Extraction:
    """Parsed LLM reply plus the call metadata for ``llm_calls`` logging."""

    payload: Any
    responses: list[LLMResponse] = field(default_factory=list)
    transcript: str | None = None


def strip_fences(text: str) -> str:
    """Remove markdown code fences (```json ... ```) around a reply."""
    return _FENCE_RE.sub("", text).strip()


def parse_reply(text: str) -> Any:
    """Parse an LLM reply as JSON.

    Raises:
        ExtractionError: If the reply is empty or not valid JSON.
    """
    cleaned = strip_fences(text)
    if not cleaned:
        raise ExtractionError("Empty reply from the extraction model", raw=text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Extraction reply is not valid JSON: {exc}", raw=text) from exc


def normalize_extraction(payload: Any) -> CandidateRecord | None:
    """Reduce an extraction payload to a single candidate record.

    Accepted shapes, in order:

    - ``{"data": [record, ...]}`` → the first record
    - ``[record, ...]`` → the first record
    - ``record`` with at least one of ``type`` / ``amount`` / ``description``

    Anything else (including empty containers) yields ``None``.
    """
    if not payload:
        return None

    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list) and data:
            return _as_candidate(data[0])
        if any(payload.get(key) for key in _MARKER_KEYS):
            return CandidateRecord.from_parsed(payload)
        return None

    if isinstance(payload, list):
        return _as_candidate(payload[0])

    return None


def _as_candidate(item: Any) -> CandidateRecord | None:
    if isinstance(item, dict):
        return CandidateRecord.from_parsed(item)
    return None


class Extractor:
    """Runs the extraction LLM for new messages and edit instructions.

    Args:
        llm_client: Chat client used for extraction.
        transcriber: Speech-to-text for voice notes.
    """

    def __init__(self, llm_client: LLMClient, transcriber: Transcriber) -> None:
        self._llm = llm_client
        self._transcriber = transcriber

    async def extract(
        self,
        content: str | VoiceNote,
        taxonomy: Taxonomy,
        today: str,
        current: Movement | None = None,
    ) -> Extraction:
        """Extract a movement from *content*.

        Args:
            content: Message text or a voice note.
            taxonomy: Taxonomy snapshot to list in the prompt.
            today: Message date as ``dd/MM/yyyy``, for relative dates.
            current: When set, *content* is a correction to this movement
                and the edit prompt is used.

        Returns:
            The parsed (not yet normalized) payload and LLM metadata.

        Raises:
            ExtractionError: If transcription or the LLM call fails, or the
                reply cannot be parsed.
        """
        transcript: str | None = None
        if isinstance(content, VoiceNote):
            try:
                transcript = await self._transcriber.transcribe(content.data, content.mime_type)
            except Exception as exc:
                raise ExtractionError(f"Voice transcription failed: {exc}") from exc
            text = transcript
        else:
            text = content

        if current is None:
            system = build_extraction_prompt(taxonomy, today)
        else:
            system = build_edit_prompt(taxonomy, today, current.to_wire())

        messages = [
            ChatMessage(role="system", content=system),
            ChatMessage(role="user", content=text),
        ]

        logger.info(
            "LLM request (%s): %s",
            "edit" if current is not None else "extract",
            text if len(text) <= 200 else text[:200] + "...",
        )
        try:
            response = await self._llm.chat(messages, json_mode=True)
        except Exception as exc:
            raise ExtractionError(f"Extraction LLM call failed: {exc}") from exc

        reply = response.content.strip()
        logger.info(
            "LLM response (%s): %r",
            response.provider,
            reply if len(reply) <= 500 else reply[:500] + "...",
        )

        payload = parse_reply(reply)
        return Extraction(payload=payload, responses=[response], transcript=transcript)
