"""Data models for conversational context compression.

These models are the unit of exchange between the compressor, its
collaborators (store and summarizer), and callers. Timestamps are always
timezone-aware; naive values are interpreted as UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from context_compressor.config import CompressionLevel


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Message(BaseModel):
    """A single chat turn, read-only to the compressor."""

    id: str
    user_id: str
    thread_id: str
    session_id: str | None = None
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime
    relevance_score: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Computed by the relevance scorer, never stored",
    )
    compressed: bool | None = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)


class TimeRange(BaseModel):
    """Span of message timestamps covered by a summary."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, v: datetime) -> datetime:
        return _as_utc(v)

    def covers(self, moment: datetime) -> bool:
        """Return True when ``moment`` lies inside the range (both ends inclusive)."""
        return self.start <= moment <= self.end


class ContextSummary(BaseModel):
    """Compact summary of one contiguous group of messages."""

    id: str
    user_id: str
    thread_id: str
    time_range: TimeRange
    summary: str
    key_topics: list[str] = Field(default_factory=list)
    important_decisions: list[str] = Field(default_factory=list)
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    message_count: int = Field(..., ge=0)
    tokens_compressed: int = Field(
        ...,
        ge=0,
        description="Characters of source transcript compressed into this summary",
    )
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _normalize_created(cls, v: datetime) -> datetime:
        return _as_utc(v)


class ConversationContext(BaseModel):
    """A standing fact about a user or session."""

    id: str
    user_id: str
    session_id: str | None = None
    context_type: str
    context_data: Any = None
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    priority_level: str = "medium"
    created_at: datetime
    valid_until: datetime | None = None

    @field_validator("created_at", "valid_until")
    @classmethod
    def _normalize(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v) if v is not None else None

    def is_valid_at(self, moment: datetime) -> bool:
        """Return True while the fact has not expired."""
        return self.valid_until is None or self.valid_until > moment


class StoreIdentity(BaseModel):
    """Identity of the user's business."""

    id: str
    name: str
    domain: str | None = None
    plan: str | None = None
    created_at: datetime | None = None


class StoreMetric(BaseModel):
    """One named business metric."""

    metric_name: str
    metric_value: Any = None
    updated_at: datetime | None = None


class StoreSnapshot(BaseModel):
    """Minimal business context handed to the generation step."""

    store: StoreIdentity
    critical_metrics: list[StoreMetric] = Field(default_factory=list)


class CompressionMetadata(BaseModel):
    """How a compressed context was produced."""

    compression_level: CompressionLevel
    total_messages_processed: int = Field(..., ge=0)
    messages_compressed: int = Field(..., ge=0)
    compression_ratio: float = Field(..., ge=0.0, le=1.0)
    processing_time_ms: float = Field(..., ge=0.0)
    cache_hit: bool = False
    relevance_threshold: float = Field(..., ge=0.0, le=1.0)


class CompressedContext(BaseModel):
    """The assembled, token-budgeted context returned to callers.

    ``recent_messages`` and ``summarized_history`` are newest first,
    ``relevant_context`` is ordered by descending relevance.
    """

    recent_messages: list[Message] = Field(default_factory=list)
    summarized_history: list[ContextSummary] = Field(default_factory=list)
    relevant_context: list[ConversationContext] = Field(default_factory=list)
    store_context: StoreSnapshot | None = None
    compression_metadata: CompressionMetadata
    total_tokens_estimate: int = Field(..., ge=0)


class CompressionStats(BaseModel):
    """Maintenance statistics over recently created summaries."""

    cache_size: int = Field(..., ge=0)
    total_summaries: int = Field(..., ge=0)
    avg_compression_ratio: float = Field(..., ge=0.0)
