"""Persistent-store collaborator contract."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from context_compressor.models import (
        ContextSummary,
        ConversationContext,
        Message,
        StoreSnapshot,
        TimeRange,
    )


class StoreError(Exception):
    """Raised when the backing store cannot serve a query."""


class ContextStore(Protocol):
    """Queries the compressor issues against the persistent store.

    Every method filters by user id; archived messages are never returned.
    """

    async def fetch_recent_messages(
        self,
        user_id: str,
        thread_id: str | None,
        session_id: str | None,
        *,
        limit: int,
    ) -> list[Message]:
        """Newest-first messages of a thread (or of a session when no thread is given)."""
        ...

    async def fetch_messages_in_window(
        self,
        user_id: str,
        thread_id: str,
        *,
        start: datetime,
        end: datetime,
    ) -> list[Message]:
        """Oldest-first thread messages with ``start <= timestamp < end``."""
        ...

    async def fetch_summary_ranges(
        self,
        user_id: str,
        thread_id: str,
        *,
        since: datetime,
    ) -> list[TimeRange]:
        """Time ranges of every thread summary ending at or after ``since``, any score."""
        ...

    async def fetch_summaries(
        self,
        user_id: str,
        thread_id: str,
        *,
        min_score: float,
        limit: int,
    ) -> list[ContextSummary]:
        """Newest-created-first summaries scoring at least ``min_score``."""
        ...

    async def fetch_summaries_created_since(self, since: datetime) -> list[ContextSummary]:
        """All summaries created at or after ``since``, across users."""
        ...

    async def fetch_standing_facts(
        self,
        user_id: str,
        session_id: str | None,
        *,
        min_score: float,
        now: datetime,
        limit: int,
    ) -> list[ConversationContext]:
        """Unexpired facts scoring at least ``min_score``, highest score first."""
        ...

    async def fetch_store_snapshot(
        self,
        user_id: str,
        *,
        metric_names: Sequence[str],
        metric_limit: int,
    ) -> StoreSnapshot | None:
        """Business identity plus the newest rows of the named metrics."""
        ...

    async def insert_summary(self, summary: ContextSummary) -> None:
        """Persist a new summary. Re-inserting the same id is a no-op."""
        ...
