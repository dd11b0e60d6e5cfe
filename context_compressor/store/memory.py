"""In-process implementation of the store contract."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from context_compressor.models import StoreSnapshot

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from context_compressor.models import (
        ContextSummary,
        ConversationContext,
        Message,
        StoreIdentity,
        StoreMetric,
        TimeRange,
    )


class InMemoryContextStore:
    """Keeps everything in plain lists; useful for embedding and tests."""

    def __init__(self) -> None:
        """Create an empty store."""
        self.messages: list[Message] = []
        self.archived_ids: set[str] = set()
        self.summaries: list[ContextSummary] = []
        self.facts: list[ConversationContext] = []
        self.stores: dict[str, StoreIdentity] = {}
        self.metrics: dict[str, list[StoreMetric]] = {}
        self._lock = asyncio.Lock()

    # --- Seeding helpers ---

    def add_messages(self, messages: Iterable[Message], *, archived: bool = False) -> None:
        """Append messages, optionally flagged as archived."""
        for message in messages:
            self.messages.append(message)
            if archived:
                self.archived_ids.add(message.id)

    def add_facts(self, facts: Iterable[ConversationContext]) -> None:
        """Append standing facts."""
        self.facts.extend(facts)

    def set_store(
        self,
        user_id: str,
        store: StoreIdentity,
        metrics: Iterable[StoreMetric] = (),
    ) -> None:
        """Register the business owned by ``user_id``."""
        self.stores[user_id] = store
        self.metrics[store.id] = list(metrics)

    # --- ContextStore ---

    def _live(self, user_id: str) -> list[Message]:
        return [
            m for m in self.messages if m.user_id == user_id and m.id not in self.archived_ids
        ]

    async def fetch_recent_messages(
        self,
        user_id: str,
        thread_id: str | None,
        session_id: str | None,
        *,
        limit: int,
    ) -> list[Message]:
        """Newest-first messages of a thread (or session)."""
        rows = self._live(user_id)
        if thread_id:
            rows = [m for m in rows if m.thread_id == thread_id]
        elif session_id:
            rows = [m for m in rows if m.session_id == session_id]
        rows.sort(key=lambda m: m.timestamp, reverse=True)
        return [m.model_copy() for m in rows[:limit]]

    async def fetch_messages_in_window(
        self,
        user_id: str,
        thread_id: str,
        *,
        start: datetime,
        end: datetime,
    ) -> list[Message]:
        """Oldest-first thread messages inside ``[start, end)``."""
        rows = [
            m
            for m in self._live(user_id)
            if m.thread_id == thread_id and start <= m.timestamp < end
        ]
        rows.sort(key=lambda m: m.timestamp)
        return [m.model_copy() for m in rows]

    async def fetch_summary_ranges(
        self,
        user_id: str,
        thread_id: str,
        *,
        since: datetime,
    ) -> list[TimeRange]:
        """Ranges of thread summaries that end at or after ``since``."""
        return [
            s.time_range
            for s in self.summaries
            if s.user_id == user_id and s.thread_id == thread_id and s.time_range.end >= since
        ]

    async def fetch_summaries(
        self,
        user_id: str,
        thread_id: str,
        *,
        min_score: float,
        limit: int,
    ) -> list[ContextSummary]:
        """Newest-created-first summaries above the score floor."""
        rows = [
            s
            for s in self.summaries
            if s.user_id == user_id and s.thread_id == thread_id and s.relevance_score >= min_score
        ]
        rows.sort(key=lambda s: s.created_at, reverse=True)
        return [s.model_copy(deep=True) for s in rows[:limit]]

    async def fetch_summaries_created_since(self, since: datetime) -> list[ContextSummary]:
        """Summaries created at or after ``since``."""
        return [s.model_copy(deep=True) for s in self.summaries if s.created_at >= since]

    async def fetch_standing_facts(
        self,
        user_id: str,
        session_id: str | None,
        *,
        min_score: float,
        now: datetime,
        limit: int,
    ) -> list[ConversationContext]:
        """Unexpired facts above the score floor, highest first."""
        rows = [
            f
            for f in self.facts
            if f.user_id == user_id
            and (not session_id or f.session_id == session_id)
            and f.relevance_score >= min_score
            and f.is_valid_at(now)
        ]
        rows.sort(key=lambda f: f.relevance_score, reverse=True)
        return [f.model_copy(deep=True) for f in rows[:limit]]

    async def fetch_store_snapshot(
        self,
        user_id: str,
        *,
        metric_names: Sequence[str],
        metric_limit: int,
    ) -> StoreSnapshot | None:
        """The user's business and its newest allow-listed metrics."""
        store = self.stores.get(user_id)
        if store is None:
            return None
        metrics = [m for m in self.metrics.get(store.id, []) if m.metric_name in metric_names]
        metrics.sort(
            key=lambda m: m.updated_at.timestamp() if m.updated_at else float("-inf"),
            reverse=True,
        )
        return StoreSnapshot(store=store, critical_metrics=metrics[:metric_limit])

    async def insert_summary(self, summary: ContextSummary) -> None:
        """Append ``summary`` unless its id is already stored."""
        async with self._lock:
            if any(s.id == summary.id for s in self.summaries):
                return
            self.summaries.append(summary.model_copy(deep=True))
