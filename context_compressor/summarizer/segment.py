"""Summarize a bounded group of chat messages into a ``ContextSummary``.

The summarizer is total over non-empty input: when the language-generation
collaborator fails, times out, or replies with something unparseable, a
deterministic fallback summary is returned instead of an error.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from pydantic import ValidationError

from context_compressor import constants
from context_compressor.models import ContextSummary, TimeRange
from context_compressor.summarizer._prompts import (
    FALLBACK_SUMMARY_TEMPLATE,
    SEGMENT_SUMMARY_PROMPT,
    format_transcript,
)
from context_compressor.summarizer.models import (
    ParsedSummary,
    ParseFailure,
    ParseResult,
    SummaryPayload,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from context_compressor.models import Message
    from context_compressor.summarizer._llm import TextGenerator

LOGGER = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_summary_reply(raw: str) -> ParseResult:
    """Interpret a collaborator reply as a :class:`SummaryPayload`.

    Tolerates Markdown code fences and prose around the JSON object.
    """
    text = _CODE_FENCE.sub("", (raw or "").strip())
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return ParseFailure(reason="no JSON object in reply", raw=raw)
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        return ParseFailure(reason=f"invalid JSON: {e}", raw=raw)
    if not isinstance(data, dict):
        return ParseFailure(reason="reply is not a JSON object", raw=raw)
    try:
        return ParsedSummary(payload=SummaryPayload.model_validate(data))
    except ValidationError as e:
        return ParseFailure(reason=f"schema mismatch: {e.error_count()} errors", raw=raw)


class ContextSummarizer:
    """Turn message groups into structured summaries via a text generator."""

    def __init__(
        self,
        generate: TextGenerator,
        *,
        timeout: float = constants.DEFAULT_SUMMARY_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Wrap ``generate``; each call is bounded by ``timeout`` seconds."""
        self._generate = generate
        self.timeout = timeout
        self._clock = clock or (lambda: datetime.now(UTC))

    async def summarize(
        self,
        messages: Sequence[Message],
        time_range: TimeRange,
    ) -> ContextSummary:
        """Summarize ``messages`` (oldest first) covering ``time_range``.

        Raises:
            ValueError: If ``messages`` is empty.

        """
        if not messages:
            msg = "No messages to summarize"
            raise ValueError(msg)

        transcript = format_transcript([(m.role, m.content) for m in messages])
        prompt = SEGMENT_SUMMARY_PROMPT.format(transcript=transcript)

        try:
            raw = await asyncio.wait_for(self._generate(prompt), timeout=self.timeout)
        except Exception:
            LOGGER.warning(
                "Summarization of %d messages failed, using fallback",
                len(messages),
                exc_info=True,
            )
            return self.fallback_summary(messages, time_range, transcript)

        parsed = parse_summary_reply(raw)
        if isinstance(parsed, ParseFailure):
            LOGGER.warning("Unparseable summary reply (%s), using fallback", parsed.reason)
            return self.fallback_summary(messages, time_range, transcript)

        payload = parsed.payload
        try:
            return ContextSummary(
                id=_new_summary_id(),
                user_id=messages[0].user_id,
                thread_id=messages[0].thread_id,
                time_range=time_range,
                summary=payload.summary,
                key_topics=payload.key_topics,
                important_decisions=payload.important_decisions,
                relevance_score=payload.relevance_score,
                message_count=len(messages),
                tokens_compressed=len(transcript),
                created_at=self._clock(),
            )
        except ValidationError as e:
            LOGGER.warning("Summary reply rejected (%s), using fallback", e.errors()[0]["msg"])
            return self.fallback_summary(messages, time_range, transcript)

    def fallback_summary(
        self,
        messages: Sequence[Message],
        time_range: TimeRange,
        transcript: str | None = None,
    ) -> ContextSummary:
        """Build the deterministic summary used when generation fails."""
        if transcript is None:
            transcript = format_transcript([(m.role, m.content) for m in messages])
        return ContextSummary(
            id=_new_summary_id(),
            user_id=messages[0].user_id,
            thread_id=messages[0].thread_id,
            time_range=time_range,
            summary=FALLBACK_SUMMARY_TEMPLATE.format(count=len(messages)),
            key_topics=[constants.FALLBACK_TOPIC],
            important_decisions=[],
            relevance_score=constants.FALLBACK_RELEVANCE,
            message_count=len(messages),
            tokens_compressed=len(transcript),
            created_at=self._clock(),
        )


def _new_summary_id() -> str:
    return f"summary_{uuid4().hex}"
