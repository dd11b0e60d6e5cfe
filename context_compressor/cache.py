"""Process-local, time-expiring cache for assembled contexts."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from context_compressor import constants

if TYPE_CHECKING:
    from collections.abc import Callable

    from context_compressor.config import CacheConfig

LOGGER = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Interface the compressor needs from a cache.

    A networked cache can stand in for :class:`ContextCache` in multi-instance
    deployments. Callers must treat a miss as normal (e.g. after a restart).
    """

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    def clear(self) -> None: ...

    def size(self) -> int: ...


@dataclass
class _Entry:
    value: Any
    expires_at: float


class ContextCache:
    """In-memory key/value store with per-entry absolute expiry.

    Expired entries are evicted lazily by :meth:`get`. :meth:`start_sweeper`
    optionally runs a background purge for memory hygiene; correctness never
    depends on it.
    """

    def __init__(
        self,
        default_ttl: float = constants.DEFAULT_CACHE_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize an empty cache; ``default_ttl`` is in seconds."""
        if default_ttl <= 0:
            msg = f"default_ttl must be > 0, got {default_ttl}"
            raise ValueError(msg)
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task[None] | None = None
        self.sweep_interval: float | None = None

    @classmethod
    def from_config(cls, config: CacheConfig) -> ContextCache:
        """Build a cache from a :class:`CacheConfig`."""
        cache = cls(config.ttl_seconds)
        cache.sweep_interval = config.sweep_interval_seconds
        return cache

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds (default TTL if None)."""
        expires_at = self._clock() + (ttl if ttl is not None else self.default_ttl)
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=expires_at)
        LOGGER.debug("Cached %s", key)

    def get(self, key: str) -> Any | None:
        """Return the live value for ``key``, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                LOGGER.debug("Evicted expired %s", key)
                return None
            return entry.value

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        """Number of stored entries, including expired ones not yet evicted."""
        with self._lock:
            return len(self._entries)

    def purge_expired(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    async def start_sweeper(self, interval: float | None = None) -> None:
        """Start the background purge task.

        Falls back to the configured ``sweep_interval``; does nothing when
        neither is set.
        """
        interval = interval if interval is not None else self.sweep_interval
        if interval is None:
            return
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep(interval))
            LOGGER.info("Started cache sweeper (interval=%.0fs)", interval)

    async def stop_sweeper(self) -> None:
        """Stop the background purge task if running."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

    async def _sweep(self, interval: float) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                dropped = self.purge_expired()
                if dropped:
                    LOGGER.debug("Cache sweeper dropped %d expired entries", dropped)
            except asyncio.CancelledError:
                break
            except Exception:
                LOGGER.exception("Error in cache sweeper")
