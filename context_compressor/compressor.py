"""Smart context compression for chat turns.

Per request the compressor:
1. Returns a cached result when one exists (unless ``force_refresh``)
2. Loads recent messages, summaries, standing facts and the business
   snapshot concurrently, degrading any failed read to empty
3. Summarizes un-covered message groups that aged past the freshness window
4. Assembles a token-estimated ``CompressedContext`` and caches it

The compressor holds no per-conversation state; everything lives in the
cache and the store. Concurrent misses on the same key may both compute
the full result (no request coalescing).
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from time import perf_counter
from typing import TYPE_CHECKING, Any, TypeVar

from context_compressor import constants
from context_compressor.cache import ContextCache
from context_compressor.config import CompressionOptions
from context_compressor.models import (
    CompressedContext,
    CompressionMetadata,
    CompressionStats,
    ContextSummary,
    ConversationContext,
    Message,
    StoreSnapshot,
    TimeRange,
)
from context_compressor.scoring import score_message

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from context_compressor.cache import CacheBackend
    from context_compressor.store.base import ContextStore
    from context_compressor.summarizer import ContextSummarizer

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _elapsed_ms(start: float) -> float:
    """Return elapsed milliseconds since start."""
    return (perf_counter() - start) * 1000


@dataclass
class MessageGroup:
    """A run of messages with no silence longer than the grouping gap."""

    messages: list[Message]
    time_range: TimeRange


def build_cache_key(
    user_id: str,
    thread_id: str,
    session_id: str | None,
    options: CompressionOptions,
) -> str:
    """Deterministic cache address for a request."""
    options_part = (
        f"{options.level.value}_{options.max_recent_messages}_{options.relevance_threshold}"
    )
    return (
        f"{constants.CACHE_KEY_PREFIX}_{user_id}_{thread_id}_"
        f"{session_id or 'no-session'}_{options_part}"
    )


def group_messages_by_gap(
    messages: Sequence[Message],
    gap: timedelta = timedelta(hours=constants.GROUP_GAP_HOURS),
) -> list[MessageGroup]:
    """Split oldest-first ``messages`` where consecutive timestamps are more than ``gap`` apart."""
    groups: list[MessageGroup] = []
    current: list[Message] = []

    def _flush() -> None:
        if current:
            groups.append(
                MessageGroup(
                    messages=list(current),
                    time_range=TimeRange(start=current[0].timestamp, end=current[-1].timestamp),
                ),
            )

    for message in messages:
        if current and message.timestamp - current[-1].timestamp > gap:
            _flush()
            current = []
        current.append(message)
    _flush()
    return groups


def find_uncovered_messages(
    messages: Sequence[Message],
    covered: Sequence[TimeRange],
) -> list[Message]:
    """Drop messages whose timestamp already falls inside a summarized range."""
    return [m for m in messages if not any(r.covers(m.timestamp) for r in covered)]


def _payload_length(data: Any) -> int:
    return len(
        json.dumps(
            data if data is not None else {},
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        ),
    )


def estimate_tokens(
    messages: Sequence[Message],
    summaries: Sequence[ContextSummary],
    facts: Sequence[ConversationContext],
) -> int:
    """Rough token count of the assembled context (~4 characters per token).

    Every item contributes at least one character, so the estimate is zero
    only when all three lists are empty.
    """
    total_chars = 0
    for message in messages:
        total_chars += max(1, len(message.content or ""))
    for summary in summaries:
        total_chars += max(
            1,
            len(summary.summary)
            + len(" ".join(summary.key_topics))
            + len(" ".join(summary.important_decisions)),
        )
    for fact in facts:
        total_chars += _payload_length(fact.context_data)
    return math.ceil(total_chars / constants.CHARS_PER_TOKEN)


def empty_context(options: CompressionOptions | None = None) -> CompressedContext:
    """A well-formed context with nothing in it."""
    options = options or CompressionOptions()
    return CompressedContext(
        compression_metadata=CompressionMetadata(
            compression_level=options.level,
            total_messages_processed=0,
            messages_compressed=0,
            compression_ratio=0.0,
            processing_time_ms=0.0,
            cache_hit=False,
            relevance_threshold=options.relevance_threshold,
        ),
        total_tokens_estimate=0,
    )


class SmartContextCompressor:
    """Public entry point: build the context slice for the next chat reply."""

    def __init__(
        self,
        store: ContextStore,
        summarizer: ContextSummarizer,
        *,
        cache: CacheBackend | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Wire the compressor to its store, summarizer and cache."""
        self.store = store
        self.summarizer = summarizer
        self.cache: CacheBackend = cache if cache is not None else ContextCache()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def get_compressed_context(
        self,
        user_id: str,
        thread_id: str,
        session_id: str | None = None,
        options: CompressionOptions | dict[str, Any] | None = None,
    ) -> CompressedContext:
        """Return the compressed context for one chat turn.

        Store and summarizer failures never propagate: the affected part is
        left empty and the call still succeeds. Invalid ``options`` raise a
        pydantic ``ValidationError``.
        """
        opts = CompressionOptions.from_partial(options)
        cache_key = build_cache_key(user_id, thread_id, session_id, opts)

        if not opts.force_refresh:
            cached = self.cache.get(cache_key)
            if cached is not None:
                hit = cached.model_copy(deep=True)
                hit.compression_metadata.cache_hit = True
                LOGGER.debug("Cache hit for %s", cache_key)
                return hit

        LOGGER.info("Compressing context for thread %s (level=%s)", thread_id, opts.level.value)
        start = perf_counter()
        now = self._clock()

        recent, existing, facts, snapshot = await asyncio.gather(
            self._guarded(
                "recent messages",
                self._load_recent_messages(user_id, thread_id, session_id, opts, now),
                [],
            ),
            self._guarded("summaries", self._load_summaries(user_id, thread_id, opts), []),
            self._guarded("standing facts", self._load_facts(user_id, session_id, opts, now), []),
            self._guarded("store context", self._load_store_context(user_id, opts), None),
        )

        summaries = await self._guarded(
            "summary gaps",
            self._fill_summary_gaps(user_id, thread_id, existing, opts, now),
            existing,
        )

        compressed = sum(s.message_count for s in summaries)
        total = len(recent) + compressed
        metadata = CompressionMetadata(
            compression_level=opts.level,
            total_messages_processed=total,
            messages_compressed=compressed,
            compression_ratio=compressed / max(1, total),
            processing_time_ms=_elapsed_ms(start),
            cache_hit=False,
            relevance_threshold=opts.relevance_threshold,
        )
        context = CompressedContext(
            recent_messages=recent,
            summarized_history=summaries,
            relevant_context=facts,
            store_context=snapshot,
            compression_metadata=metadata,
            total_tokens_estimate=estimate_tokens(recent, summaries, facts),
        )

        self.cache.set(cache_key, context.model_copy(deep=True))

        LOGGER.info(
            "Context compressed: %d recent, %d summaries, %d facts, %.1f%% compressed, "
            "%.0fms, ~%d tokens",
            len(recent),
            len(summaries),
            len(facts),
            metadata.compression_ratio * 100,
            metadata.processing_time_ms,
            context.total_tokens_estimate,
        )
        return context

    async def _guarded(self, label: str, awaitable: Awaitable[T], default: T) -> T:
        try:
            return await awaitable
        except Exception:
            LOGGER.warning("Failed to load %s, continuing without it", label, exc_info=True)
            return default

    async def _load_recent_messages(
        self,
        user_id: str,
        thread_id: str,
        session_id: str | None,
        opts: CompressionOptions,
        now: datetime,
    ) -> list[Message]:
        if opts.max_recent_messages == 0:
            return []
        rows = await self.store.fetch_recent_messages(
            user_id,
            thread_id,
            session_id,
            limit=opts.max_recent_messages,
        )
        rows = sorted(rows, key=lambda m: m.timestamp, reverse=True)[: opts.max_recent_messages]
        return [
            m.model_copy(update={"relevance_score": score_message(m, now=now)}) for m in rows
        ]

    async def _load_summaries(
        self,
        user_id: str,
        thread_id: str,
        opts: CompressionOptions,
    ) -> list[ContextSummary]:
        if opts.max_summaries == 0:
            return []
        rows = await self.store.fetch_summaries(
            user_id,
            thread_id,
            min_score=opts.relevance_threshold,
            limit=opts.max_summaries,
        )
        rows = [s for s in rows if s.relevance_score >= opts.relevance_threshold]
        return sorted(rows, key=lambda s: s.created_at, reverse=True)[: opts.max_summaries]

    async def _load_facts(
        self,
        user_id: str,
        session_id: str | None,
        opts: CompressionOptions,
        now: datetime,
    ) -> list[ConversationContext]:
        if opts.max_context_items == 0:
            return []
        rows = await self.store.fetch_standing_facts(
            user_id,
            session_id,
            min_score=opts.relevance_threshold,
            now=now,
            limit=opts.max_context_items,
        )
        rows = [
            f for f in rows if f.relevance_score >= opts.relevance_threshold and f.is_valid_at(now)
        ]
        return sorted(rows, key=lambda f: f.relevance_score, reverse=True)[
            : opts.max_context_items
        ]

    async def _load_store_context(
        self,
        user_id: str,
        opts: CompressionOptions,
    ) -> StoreSnapshot | None:
        if not opts.include_store_context:
            return None
        return await self.store.fetch_store_snapshot(
            user_id,
            metric_names=constants.CRITICAL_METRICS,
            metric_limit=constants.MAX_METRIC_ROWS,
        )

    async def _fill_summary_gaps(
        self,
        user_id: str,
        thread_id: str,
        existing: list[ContextSummary],
        opts: CompressionOptions,
        now: datetime,
    ) -> list[ContextSummary]:
        """Summarize message groups that are old enough but not yet covered."""
        window_start = now - timedelta(hours=opts.time_range_hours)
        fresh_cutoff = now - timedelta(hours=constants.FRESH_WINDOW_HOURS)
        if window_start >= fresh_cutoff:
            return existing

        candidates, covered = await asyncio.gather(
            self.store.fetch_messages_in_window(
                user_id,
                thread_id,
                start=window_start,
                end=fresh_cutoff,
            ),
            self.store.fetch_summary_ranges(user_id, thread_id, since=window_start),
        )
        pending = find_uncovered_messages(
            sorted(candidates, key=lambda m: m.timestamp),
            covered,
        )
        if not pending:
            return existing

        groups = [
            g for g in group_messages_by_gap(pending) if len(g.messages) >= constants.MIN_GROUP_SIZE
        ]
        created: list[ContextSummary] = []
        for group in groups[: constants.MAX_GROUPS_PER_CALL]:
            try:
                summary = await self.summarizer.summarize(group.messages, group.time_range)
            except Exception:
                LOGGER.warning(
                    "Failed to summarize %d messages", len(group.messages), exc_info=True
                )
                continue
            try:
                await self.store.insert_summary(summary)
            except Exception:
                LOGGER.warning(
                    "Failed to persist summary %s, keeping it for this response only",
                    summary.id,
                    exc_info=True,
                )
            created.append(summary)

        if created:
            LOGGER.info("Generated %d new summaries for thread %s", len(created), thread_id)

        if opts.max_summaries == 0:
            return []
        eligible = [s for s in created if s.relevance_score >= opts.relevance_threshold]
        merged = sorted([*existing, *eligible], key=lambda s: s.created_at, reverse=True)
        return merged[: opts.max_summaries]

    def clear_cache(self) -> None:
        """Drop every cached context."""
        self.cache.clear()
        LOGGER.info("Context cache cleared")

    async def get_compression_stats(self) -> CompressionStats:
        """Cache size plus statistics over summaries created in the last day."""
        since = self._clock() - timedelta(hours=constants.STATS_WINDOW_HOURS)
        try:
            summaries = await self.store.fetch_summaries_created_since(since)
        except Exception:
            LOGGER.warning("Failed to load compression stats", exc_info=True)
            return CompressionStats(
                cache_size=self.cache.size(),
                total_summaries=0,
                avg_compression_ratio=0.0,
            )

        ratios = [s.tokens_compressed / max(1, s.message_count) for s in summaries]
        return CompressionStats(
            cache_size=self.cache.size(),
            total_summaries=len(summaries),
            avg_compression_ratio=sum(ratios) / len(ratios) if ratios else 0.0,
        )
