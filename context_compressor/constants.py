"""Default configuration settings for the context compressor."""

from __future__ import annotations

# --- Gap-filling ---
FRESH_WINDOW_HOURS = 2  # Messages newer than this are never summarized
GROUP_GAP_HOURS = 4  # A silence longer than this starts a new group
MAX_GROUPS_PER_CALL = 3
MIN_GROUP_SIZE = 3

# --- Cache ---
DEFAULT_CACHE_TTL_SECONDS = 300.0
CACHE_KEY_PREFIX = "context"

# --- Stats ---
STATS_WINDOW_HOURS = 24

# --- Business snapshot ---
CRITICAL_METRICS = ("total_orders", "revenue_today", "inventory_alerts")
MAX_METRIC_ROWS = 10

# --- Summarizer ---
DEFAULT_SUMMARY_TIMEOUT_SECONDS = 20.0
FALLBACK_TOPIC = "general_conversation"
FALLBACK_RELEVANCE = 0.3
DEFAULT_REPORTED_RELEVANCE = 0.5

# --- Token estimation ---
CHARS_PER_TOKEN = 4
