"""Render a compressed context into prompt text, and pick a compression level."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from context_compressor.config import CompressionLevel

if TYPE_CHECKING:
    from context_compressor.models import CompressedContext, StoreSnapshot

HIGH_RELEVANCE_MARKER = " ⭐"
HIGH_RELEVANCE_THRESHOLD = 0.7
MAX_RENDERED_FACTS = 5
MAX_FACT_CHARS = 200

SHORT_REQUEST_CHARS = 50
LONG_REQUEST_CHARS = 200
COMPLEX_AGENTS = ("shopify", "anchor")


def choose_compression_level(
    message: str,
    *,
    agent_id: str = "",
    has_attachments: bool = False,
) -> CompressionLevel:
    """Pick a preset from the shape of the incoming request.

    Short plain requests to simple agents get MINIMAL; long requests,
    attachments or complex agents get COMPREHENSIVE; everything else BALANCED.
    """
    is_complex_agent = any(name in agent_id for name in COMPLEX_AGENTS)
    if len(message) < SHORT_REQUEST_CHARS and not has_attachments and not is_complex_agent:
        return CompressionLevel.MINIMAL
    if len(message) > LONG_REQUEST_CHARS or has_attachments or is_complex_agent:
        return CompressionLevel.COMPREHENSIVE
    return CompressionLevel.BALANCED


def format_store_context(snapshot: StoreSnapshot | None) -> str:
    """Render the business snapshot block, or an empty string."""
    if snapshot is None:
        return ""
    lines = ["Store Context:"]
    lines.append(f"- Store: {snapshot.store.name} ({snapshot.store.domain or 'no domain'})")
    if snapshot.store.plan:
        lines.append(f"- Plan: {snapshot.store.plan}")
    if snapshot.critical_metrics:
        lines.append("- Critical Metrics:")
        lines.extend(f"  • {m.metric_name}: {m.metric_value}" for m in snapshot.critical_metrics)
    return "\n".join(lines) + "\n"


def format_compressed_context(context: CompressedContext) -> str:
    """Render ``context`` as the history section of a generation prompt."""
    sections: list[str] = []

    if context.recent_messages:
        lines = ["Recent Conversation:"]
        for message in reversed(context.recent_messages):  # chronological
            marker = (
                HIGH_RELEVANCE_MARKER
                if (message.relevance_score or 0) > HIGH_RELEVANCE_THRESHOLD
                else ""
            )
            lines.append(f"{message.role}: {message.content}{marker}")
        sections.append("\n".join(lines))

    if context.summarized_history:
        lines = ["Previous Conversation Summaries:"]
        for summary in context.summarized_history:
            start = summary.time_range.start.date().isoformat()
            end = summary.time_range.end.date().isoformat()
            lines.append(f"📝 {start} - {end}:")
            lines.append(f"   Summary: {summary.summary}")
            if summary.key_topics:
                lines.append(f"   Topics: {', '.join(summary.key_topics)}")
            if summary.important_decisions:
                lines.append(f"   Decisions: {', '.join(summary.important_decisions)}")
        sections.append("\n".join(lines))

    if context.relevant_context:
        lines = ["Relevant Context:"]
        for fact in context.relevant_context[:MAX_RENDERED_FACTS]:
            payload = json.dumps(fact.context_data, ensure_ascii=False, default=str)
            if len(payload) > MAX_FACT_CHARS:
                payload = payload[:MAX_FACT_CHARS] + "..."
            lines.append(f"- {fact.context_type}: {payload}")
        sections.append("\n".join(lines))

    store_block = format_store_context(context.store_context)
    if store_block:
        sections.append(store_block.rstrip("\n"))

    meta = context.compression_metadata
    sections.append(
        f"Context Compression: {meta.compression_level.value} level, "
        f"{meta.total_messages_processed} messages processed, "
        f"{meta.compression_ratio * 100:.1f}% compressed",
    )
    return "\n\n".join(sections) + "\n"
