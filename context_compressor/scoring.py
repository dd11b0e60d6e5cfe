"""Heuristic relevance scoring for individual chat messages."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from context_compressor.models import Message

RECENCY_WEIGHT = 0.30
TOPIC_WEIGHT = 0.25
ROLE_WEIGHT = 0.25
DECISION_WEIGHT = 0.20

RECENCY_HORIZON_HOURS = 168.0  # One week
ROLE_PRIORS = {"user": 0.8, "assistant": 0.6}
DECISION_KEYWORDS = (
    "decided",
    "choose",
    "selected",
    "confirmed",
    "approved",
    "created",
    "updated",
    "changed",
    "set",
    "configured",
)
DECISION_STEP = 0.1

_KEYWORD_SPLIT = re.compile(r"[_\s]+")


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def recency_score(timestamp: datetime, now: datetime) -> float:
    """Linear decay from 1.0 at age zero to 0.0 at one week or older."""
    age_hours = (now - timestamp).total_seconds() / 3600
    return _clamp(1 - age_hours / RECENCY_HORIZON_HOURS)


def topic_score(content: str, intent: str | None) -> float:
    """Fraction of intent keywords found in ``content`` (case-insensitive)."""
    if not intent or not content:
        return 0.0
    keywords = [k for k in _KEYWORD_SPLIT.split(intent.lower()) if k]
    if not keywords:
        return 0.0
    content_lower = content.lower()
    matches = sum(1 for keyword in keywords if keyword in content_lower)
    return _clamp(matches / len(keywords))


def role_score(role: str) -> float:
    """Prior for who spoke: end users outrank the assistant."""
    return ROLE_PRIORS.get(role, ROLE_PRIORS["assistant"])


def decision_score(content: str) -> float:
    """Reward decision language, +0.1 per matched keyword."""
    content_lower = (content or "").lower()
    hits = sum(1 for keyword in DECISION_KEYWORDS if keyword in content_lower)
    return _clamp(hits * DECISION_STEP)


def score_message(
    message: Message,
    current_intent: str | None = None,
    user_preferences: Mapping[str, Any] | None = None,  # noqa: ARG001
    *,
    now: datetime | None = None,
) -> float:
    """Score how much ``message`` matters for the next reply, in [0, 1].

    Weighted sum of recency (0.30), topic match against ``current_intent``
    (0.25), speaker role (0.25) and decision language (0.20). Each signal is
    clamped to [0, 1] before weighting.

    ``user_preferences`` is accepted for call compatibility with richer
    scorers and does not affect the heuristic weighting.
    """
    now = now or datetime.now(UTC)
    score = (
        recency_score(message.timestamp, now) * RECENCY_WEIGHT
        + topic_score(message.content, current_intent) * TOPIC_WEIGHT
        + role_score(message.role) * ROLE_WEIGHT
        + decision_score(message.content) * DECISION_WEIGHT
    )
    return _clamp(score)
