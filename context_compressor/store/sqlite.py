"""SQLite-backed implementation of the store contract."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from context_compressor.models import (
    ContextSummary,
    ConversationContext,
    Message,
    StoreIdentity,
    StoreMetric,
    StoreSnapshot,
    TimeRange,
)
from context_compressor.store.base import StoreError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = [
    """CREATE TABLE IF NOT EXISTS chat_history (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        thread_id TEXT NOT NULL,
        session_id TEXT,
        message_type TEXT NOT NULL CHECK (message_type IN ('user', 'assistant')),
        content TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        archived INTEGER NOT NULL DEFAULT 0
    )""",
    "CREATE INDEX IF NOT EXISTS idx_chat_thread ON chat_history(user_id, thread_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_chat_session ON chat_history(user_id, session_id, timestamp)",
    """CREATE TABLE IF NOT EXISTS context_summaries (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        thread_id TEXT NOT NULL,
        time_range_start TEXT NOT NULL,
        time_range_end TEXT NOT NULL,
        summary TEXT NOT NULL,
        key_topics TEXT NOT NULL DEFAULT '[]',
        important_decisions TEXT NOT NULL DEFAULT '[]',
        relevance_score REAL NOT NULL,
        message_count INTEGER NOT NULL,
        tokens_compressed INTEGER NOT NULL,
        created_at TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_summaries_thread ON context_summaries(user_id, thread_id, created_at)",
    """CREATE TABLE IF NOT EXISTS conversation_context (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        session_id TEXT,
        context_type TEXT NOT NULL,
        context_data TEXT NOT NULL DEFAULT 'null',
        relevance_score REAL NOT NULL,
        priority_level TEXT NOT NULL DEFAULT 'medium',
        created_at TEXT NOT NULL,
        valid_until TEXT
    )""",
    "CREATE INDEX IF NOT EXISTS idx_context_user ON conversation_context(user_id, relevance_score)",
    """CREATE TABLE IF NOT EXISTS stores (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        domain TEXT,
        plan TEXT,
        created_at TEXT
    )""",
    """CREATE TABLE IF NOT EXISTS store_metrics (
        store_id TEXT NOT NULL REFERENCES stores(id) ON DELETE CASCADE,
        metric_name TEXT NOT NULL,
        metric_value TEXT,
        updated_at TEXT
    )""",
]


def _ts(value: datetime | None) -> str | None:
    """Fixed-width UTC ISO string so lexical order matches time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteContextStore:
    """Single-file store using the stdlib ``sqlite3`` driver.

    Queries run in a worker thread so the event loop never blocks on disk.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Open (lazily) the database at ``db_path``; ``":memory:"`` is allowed."""
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        """Lazy connection with the schema applied."""
        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    self.db_path,
                    isolation_level=None,  # autocommit for explicit transaction control
                    check_same_thread=False,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                self._migrate(conn)
            except sqlite3.Error as e:
                msg = f"Failed to open {self.db_path}: {e}"
                raise StoreError(msg) from e
            self._conn = conn
        return self._conn

    @staticmethod
    def _migrate(conn: sqlite3.Connection) -> None:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        if version >= SCHEMA_VERSION:
            return
        conn.execute("BEGIN")
        try:
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            conn.execute("COMMIT")
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise
        LOGGER.info("Applied context store schema v%d", SCHEMA_VERSION)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for explicit transactions."""
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            msg = f"Query failed: {e}"
            raise StoreError(msg) from e

    async def _aquery(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        return await asyncio.to_thread(self._query, sql, params)

    # --- Seeding helpers (used by the chat pipeline and tests) ---

    def add_messages(self, messages: Iterable[Message], *, archived: bool = False) -> None:
        """Insert chat messages."""
        rows = [
            (
                m.id,
                m.user_id,
                m.thread_id,
                m.session_id,
                m.role,
                m.content,
                _ts(m.timestamp),
                int(archived),
            )
            for m in messages
        ]
        try:
            with self.transaction() as conn:
                conn.executemany(
                    "INSERT INTO chat_history (id, user_id, thread_id, session_id, message_type,"
                    " content, timestamp, archived) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )
        except sqlite3.Error as e:
            msg = f"Failed to insert messages: {e}"
            raise StoreError(msg) from e

    def add_facts(self, facts: Iterable[ConversationContext]) -> None:
        """Insert standing facts."""
        rows = [
            (
                f.id,
                f.user_id,
                f.session_id,
                f.context_type,
                json.dumps(f.context_data),
                f.relevance_score,
                f.priority_level,
                _ts(f.created_at),
                _ts(f.valid_until),
            )
            for f in facts
        ]
        try:
            with self.transaction() as conn:
                conn.executemany(
                    "INSERT INTO conversation_context (id, user_id, session_id, context_type,"
                    " context_data, relevance_score, priority_level, created_at, valid_until)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )
        except sqlite3.Error as e:
            msg = f"Failed to insert facts: {e}"
            raise StoreError(msg) from e

    def set_store(
        self,
        user_id: str,
        store: StoreIdentity,
        metrics: Iterable[StoreMetric] = (),
    ) -> None:
        """Register (or replace) the business owned by ``user_id``."""
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM stores WHERE user_id = ?", (user_id,))
                conn.execute(
                    "INSERT INTO stores (id, user_id, name, domain, plan, created_at)"
                    " VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        store.id,
                        user_id,
                        store.name,
                        store.domain,
                        store.plan,
                        _ts(store.created_at),
                    ),
                )
                conn.executemany(
                    "INSERT INTO store_metrics (store_id, metric_name, metric_value, updated_at)"
                    " VALUES (?, ?, ?, ?)",
                    [
                        (store.id, m.metric_name, json.dumps(m.metric_value), _ts(m.updated_at))
                        for m in metrics
                    ],
                )
        except sqlite3.Error as e:
            msg = f"Failed to save store for {user_id}: {e}"
            raise StoreError(msg) from e

    # --- ContextStore ---

    async def fetch_recent_messages(
        self,
        user_id: str,
        thread_id: str | None,
        session_id: str | None,
        *,
        limit: int,
    ) -> list[Message]:
        """Newest-first messages of a thread (or session)."""
        sql = "SELECT * FROM chat_history WHERE user_id = ? AND archived = 0"
        params: list[Any] = [user_id]
        if thread_id:
            sql += " AND thread_id = ?"
            params.append(thread_id)
        elif session_id:
            sql += " AND session_id = ?"
            params.append(session_id)
        sql += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)
        return [_message(row) for row in await self._aquery(sql, params)]

    async def fetch_messages_in_window(
        self,
        user_id: str,
        thread_id: str,
        *,
        start: datetime,
        end: datetime,
    ) -> list[Message]:
        """Oldest-first thread messages inside ``[start, end)``."""
        rows = await self._aquery(
            "SELECT * FROM chat_history WHERE user_id = ? AND thread_id = ? AND archived = 0"
            " AND timestamp >= ? AND timestamp < ? ORDER BY timestamp ASC",
            (user_id, thread_id, _ts(start), _ts(end)),
        )
        return [_message(row) for row in rows]

    async def fetch_summary_ranges(
        self,
        user_id: str,
        thread_id: str,
        *,
        since: datetime,
    ) -> list[TimeRange]:
        """Ranges of thread summaries that end at or after ``since``."""
        rows = await self._aquery(
            "SELECT time_range_start, time_range_end FROM context_summaries"
            " WHERE user_id = ? AND thread_id = ? AND time_range_end >= ?",
            (user_id, thread_id, _ts(since)),
        )
        return [
            TimeRange(start=_dt(row["time_range_start"]), end=_dt(row["time_range_end"]))
            for row in rows
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
        rows = await self._aquery(
            "SELECT * FROM context_summaries WHERE user_id = ? AND thread_id = ?"
            " AND relevance_score >= ? ORDER BY created_at DESC LIMIT ?",
            (user_id, thread_id, min_score, limit),
        )
        return [_summary(row) for row in rows]

    async def fetch_summaries_created_since(self, since: datetime) -> list[ContextSummary]:
        """Summaries created at or after ``since``."""
        rows = await self._aquery(
            "SELECT * FROM context_summaries WHERE created_at >= ? ORDER BY created_at DESC",
            (_ts(since),),
        )
        return [_summary(row) for row in rows]

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
        sql = (
            "SELECT * FROM conversation_context WHERE user_id = ? AND relevance_score >= ?"
            " AND (valid_until IS NULL OR valid_until > ?)"
        )
        params: list[Any] = [user_id, min_score, _ts(now)]
        if session_id:
            sql += " AND session_id = ?"
            params.append(session_id)
        sql += " ORDER BY relevance_score DESC LIMIT ?"
        params.append(limit)
        return [_fact(row) for row in await self._aquery(sql, params)]

    async def fetch_store_snapshot(
        self,
        user_id: str,
        *,
        metric_names: Sequence[str],
        metric_limit: int,
    ) -> StoreSnapshot | None:
        """The user's business and its newest allow-listed metrics."""
        stores = await self._aquery(
            "SELECT id, name, domain, plan, created_at FROM stores WHERE user_id = ?",
            (user_id,),
        )
        if not stores:
            return None
        store = stores[0]
        placeholders = ", ".join("?" for _ in metric_names)
        metrics = (
            await self._aquery(
                "SELECT metric_name, metric_value, updated_at FROM store_metrics"
                f" WHERE store_id = ? AND metric_name IN ({placeholders})"  # noqa: S608
                " ORDER BY updated_at DESC LIMIT ?",
                (store["id"], *metric_names, metric_limit),
            )
            if metric_names
            else []
        )
        return StoreSnapshot(
            store=StoreIdentity(
                id=store["id"],
                name=store["name"],
                domain=store["domain"],
                plan=store["plan"],
                created_at=_dt(store["created_at"]),
            ),
            critical_metrics=[
                StoreMetric(
                    metric_name=row["metric_name"],
                    metric_value=json.loads(row["metric_value"]) if row["metric_value"] else None,
                    updated_at=_dt(row["updated_at"]),
                )
                for row in metrics
            ],
        )

    async def insert_summary(self, summary: ContextSummary) -> None:
        """Insert ``summary``; a duplicate id is ignored."""
        await asyncio.to_thread(self._insert_summary, summary)

    def _insert_summary(self, summary: ContextSummary) -> None:
        try:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO context_summaries (id, user_id, thread_id,"
                    " time_range_start, time_range_end, summary, key_topics, important_decisions,"
                    " relevance_score, message_count, tokens_compressed, created_at)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        summary.id,
                        summary.user_id,
                        summary.thread_id,
                        _ts(summary.time_range.start),
                        _ts(summary.time_range.end),
                        summary.summary,
                        json.dumps(summary.key_topics),
                        json.dumps(summary.important_decisions),
                        summary.relevance_score,
                        summary.message_count,
                        summary.tokens_compressed,
                        _ts(summary.created_at),
                    ),
                )
        except sqlite3.Error as e:
            msg = f"Failed to insert summary {summary.id}: {e}"
            raise StoreError(msg) from e


def _message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        user_id=row["user_id"],
        thread_id=row["thread_id"],
        session_id=row["session_id"],
        role=row["message_type"],
        content=row["content"],
        timestamp=_dt(row["timestamp"]),
    )


def _summary(row: sqlite3.Row) -> ContextSummary:
    return ContextSummary(
        id=row["id"],
        user_id=row["user_id"],
        thread_id=row["thread_id"],
        time_range=TimeRange(start=_dt(row["time_range_start"]), end=_dt(row["time_range_end"])),
        summary=row["summary"],
        key_topics=json.loads(row["key_topics"]),
        important_decisions=json.loads(row["important_decisions"]),
        relevance_score=row["relevance_score"],
        message_count=row["message_count"],
        tokens_compressed=row["tokens_compressed"],
        created_at=_dt(row["created_at"]),
    )


def _fact(row: sqlite3.Row) -> ConversationContext:
    return ConversationContext(
        id=row["id"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        context_type=row["context_type"],
        context_data=json.loads(row["context_data"]),
        relevance_score=row["relevance_score"],
        priority_level=row["priority_level"],
        created_at=_dt(row["created_at"]),
        valid_until=_dt(row["valid_until"]),
    )
