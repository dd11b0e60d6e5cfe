"""Tests for the smart context compressor."""

from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from context_compressor.cache import ContextCache
from context_compressor.compressor import (
    SmartContextCompressor,
    build_cache_key,
    empty_context,
    estimate_tokens,
    find_uncovered_messages,
    group_messages_by_gap,
)
from context_compressor.config import CompressionLevel, CompressionOptions
from context_compressor.models import StoreIdentity, StoreMetric, TimeRange
from context_compressor.store import InMemoryContextStore, StoreError
from context_compressor.summarizer import ContextSummarizer, UnavailableGenerator
from tests.factories import NOW, make_fact, make_message, make_summary

STORE_METHODS = (
    "fetch_recent_messages",
    "fetch_messages_in_window",
    "fetch_summary_ranges",
    "fetch_summaries",
    "fetch_summaries_created_since",
    "fetch_standing_facts",
    "fetch_store_snapshot",
    "insert_summary",
)


def _generator(relevance: float = 0.9) -> AsyncMock:
    return AsyncMock(
        return_value=json.dumps(
            {
                "summary": "Talked about orders",
                "key_topics": ["orders"],
                "important_decisions": ["ship tomorrow"],
                "relevance_score": relevance,
            },
        ),
    )


def _compressor(
    store: InMemoryContextStore | MagicMock,
    generate: AsyncMock | UnavailableGenerator | None = None,
) -> SmartContextCompressor:
    summarizer = ContextSummarizer(generate or _generator(), clock=lambda: NOW)
    return SmartContextCompressor(store, summarizer, clock=lambda: NOW)


def _failing_store() -> MagicMock:
    store = MagicMock()
    for name in STORE_METHODS:
        setattr(store, name, AsyncMock(side_effect=StoreError("database is down")))
    return store


def _messages_at(hours: list[float], start_idx: int = 0) -> list:
    return [make_message(start_idx + i, hours_ago=h) for i, h in enumerate(hours)]


class TestHelpers:
    def test_groups_split_on_gap(self) -> None:
        # Six messages an hour apart, a five hour silence, then four more.
        hours = [20, 19, 18, 17, 16, 15, 10, 9, 8, 7]
        groups = group_messages_by_gap(_messages_at(hours))
        assert [len(g.messages) for g in groups] == [6, 4]
        assert groups[0].time_range == TimeRange(
            start=NOW - timedelta(hours=20),
            end=NOW - timedelta(hours=15),
        )

    def test_gap_of_exactly_four_hours_does_not_split(self) -> None:
        groups = group_messages_by_gap(_messages_at([10, 6, 2]))
        assert len(groups) == 1

    def test_no_messages_no_groups(self) -> None:
        assert group_messages_by_gap([]) == []

    def test_uncovered_messages_inclusive_bounds(self) -> None:
        messages = _messages_at([10, 8, 6, 4])
        covered = [TimeRange(start=NOW - timedelta(hours=10), end=NOW - timedelta(hours=8))]
        assert [m.id for m in find_uncovered_messages(messages, covered)] == ["m2", "m3"]

    def test_token_estimate(self) -> None:
        assert estimate_tokens([], [], []) == 0
        one = [make_message(0, hours_ago=1, content="x" * 40)]
        assert estimate_tokens(one, [], []) == 10
        # Empty content still counts as one character.
        assert estimate_tokens([make_message(0, hours_ago=1, content="")], [], []) == 1

    def test_token_estimate_grows_with_content(self) -> None:
        messages = _messages_at([3, 2, 1])
        summaries = [make_summary("s1", start_hours_ago=20, end_hours_ago=18)]
        facts = [make_fact("f1", relevance=0.9)]
        base = estimate_tokens(messages, [], [])
        assert estimate_tokens(messages, summaries, []) > base
        assert estimate_tokens(messages, summaries, facts) > estimate_tokens(
            messages,
            summaries,
            [],
        )

    def test_cache_key_depends_on_request(self) -> None:
        opts = CompressionOptions()
        key = build_cache_key("u1", "t1", None, opts)
        assert key == "context_u1_t1_no-session_BALANCED_10_0.4"
        assert build_cache_key("u1", "t1", "s1", opts) != key
        assert build_cache_key("u1", "t1", None, CompressionOptions.for_level("MINIMAL")) != key

    def test_empty_context(self) -> None:
        context = empty_context(CompressionOptions.for_level("MINIMAL"))
        assert context.recent_messages == []
        assert context.total_tokens_estimate == 0
        assert context.compression_metadata.compression_level is CompressionLevel.MINIMAL
        assert context.compression_metadata.relevance_threshold == 0.6


class TestTotality:
    @pytest.mark.asyncio
    async def test_empty_store_and_empty_ids(self) -> None:
        compressor = _compressor(InMemoryContextStore())
        context = await compressor.get_compressed_context("", "")
        assert context.recent_messages == []
        assert context.summarized_history == []
        assert context.relevant_context == []
        assert context.store_context is None
        assert context.total_tokens_estimate == 0
        meta = context.compression_metadata
        assert meta.total_messages_processed == 0
        assert meta.compression_ratio == 0.0
        assert meta.cache_hit is False

    @pytest.mark.asyncio
    async def test_failing_store_degrades_to_empty(self) -> None:
        generate = _generator()
        compressor = _compressor(_failing_store(), generate)
        context = await compressor.get_compressed_context("u1", "t1", "s1")
        assert context.recent_messages == []
        assert context.summarized_history == []
        assert context.relevant_context == []
        assert context.store_context is None
        generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_failing_read_keeps_the_others(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([1.5, 1]))
        store.add_facts([make_fact("f1", relevance=0.9)])
        with patch.object(
            store,
            "fetch_standing_facts",
            AsyncMock(side_effect=StoreError("facts table locked")),
        ):
            context = await _compressor(store).get_compressed_context("u1", "t1", "s1")
        assert [m.id for m in context.recent_messages] == ["m1", "m0"]
        assert context.relevant_context == []

    @pytest.mark.asyncio
    async def test_invalid_options_raise(self) -> None:
        compressor = _compressor(InMemoryContextStore())
        with pytest.raises(ValueError, match="relevance_threshold"):
            await compressor.get_compressed_context(
                "u1",
                "t1",
                options={"relevance_threshold": 2},
            )


class TestAssembly:
    @pytest.mark.asyncio
    async def test_recent_messages_are_newest_first_and_scored(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([1.9, 0.5, 1.2, 0.1]))
        context = await _compressor(store).get_compressed_context(
            "u1",
            "t1",
            options={"max_recent_messages": 3},
        )
        recent = context.recent_messages
        assert [m.id for m in recent] == ["m3", "m1", "m2"]
        assert all(0.0 <= (m.relevance_score or 0) <= 1.0 for m in recent)
        assert all(m.relevance_score is not None for m in recent)
        assert recent[0].content == "message 3"

    @pytest.mark.asyncio
    async def test_zero_caps_produce_empty_lists(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([20, 19, 18, 1]))
        store.add_facts([make_fact("f1", relevance=0.9)])
        await store.insert_summary(make_summary("s1", start_hours_ago=30, end_hours_ago=28))
        context = await _compressor(store).get_compressed_context(
            "u1",
            "t1",
            "s1",
            options={"max_recent_messages": 0, "max_summaries": 0, "max_context_items": 0},
        )
        assert context.recent_messages == []
        assert context.summarized_history == []
        assert context.relevant_context == []

    @pytest.mark.asyncio
    async def test_relevance_filter_on_summaries_and_facts(self) -> None:
        store = InMemoryContextStore()
        await store.insert_summary(
            make_summary("weak", start_hours_ago=40, end_hours_ago=38, relevance=0.2),
        )
        await store.insert_summary(
            make_summary("strong", start_hours_ago=30, end_hours_ago=28, relevance=0.7),
        )
        store.add_facts(
            [
                make_fact("f-low", relevance=0.1),
                make_fact("f-mid", relevance=0.5),
                make_fact("f-high", relevance=0.95),
            ],
        )
        context = await _compressor(store).get_compressed_context("u1", "t1", "s1")
        assert [s.id for s in context.summarized_history] == ["strong"]
        assert [f.id for f in context.relevant_context] == ["f-high", "f-mid"]
        threshold = context.compression_metadata.relevance_threshold
        assert all(s.relevance_score >= threshold for s in context.summarized_history)

    @pytest.mark.asyncio
    async def test_store_context_toggle(self) -> None:
        store = InMemoryContextStore()
        store.set_store(
            "u1",
            StoreIdentity(id="st1", name="Acme"),
            [StoreMetric(metric_name="inventory_alerts", metric_value=3, updated_at=NOW)],
        )
        with_store = await _compressor(store).get_compressed_context("u1", "t1")
        without = await _compressor(store).get_compressed_context(
            "u1",
            "t1",
            options={"include_store_context": False},
        )

        assert with_store.store_context is not None
        assert with_store.store_context.critical_metrics[0].metric_value == 3
        assert without.store_context is None


class TestGapFilling:
    @pytest.mark.asyncio
    async def test_end_to_end_thread(self) -> None:
        store = InMemoryContextStore()
        hours = [30, 29, 28, 20, 19, 18, 17, 10, 9, 8, 1, 0.5]
        store.add_messages(_messages_at(hours))
        generate = _generator()
        compressor = _compressor(store, generate)

        context = await compressor.get_compressed_context(
            "u1",
            "t1",
            options={"time_range_hours": 24, "max_summaries": 5},
        )

        summaries = context.summarized_history
        assert len(summaries) == 2
        assert generate.await_count == 2
        window_start = NOW - timedelta(hours=24)
        fresh_cutoff = NOW - timedelta(hours=2)
        for summary in summaries:
            assert summary.message_count >= 3
            assert summary.time_range.start >= window_start
            assert summary.time_range.end < fresh_cutoff
        assert sorted(s.message_count for s in summaries) == [3, 4]

        assert len(context.recent_messages) == 10
        assert [m.id for m in context.recent_messages[:2]] == ["m11", "m10"]
        assert context.recent_messages[0].content == "message 11"

        meta = context.compression_metadata
        assert meta.messages_compressed == 7
        assert meta.total_messages_processed == 17
        assert meta.compression_ratio == pytest.approx(7 / 17)
        assert len(store.summaries) == 2

    @pytest.mark.asyncio
    async def test_groups_are_summarized_once(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([20, 19, 18, 17]))
        generate = _generator()
        compressor = _compressor(store, generate)

        first = await compressor.get_compressed_context("u1", "t1")
        second = await compressor.get_compressed_context(
            "u1",
            "t1",
            options={"force_refresh": True},
        )

        assert generate.await_count == 1
        assert len(store.summaries) == 1
        assert [s.id for s in first.summarized_history] == [s.id for s in second.summarized_history]

    @pytest.mark.asyncio
    async def test_low_relevance_summary_is_stored_but_not_returned(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([12, 11, 10]))
        compressor = _compressor(store, _generator(relevance=0.1))

        context = await compressor.get_compressed_context("u1", "t1")

        assert context.summarized_history == []
        assert len(store.summaries) == 1

    @pytest.mark.asyncio
    async def test_small_groups_and_fresh_messages_are_left_alone(self) -> None:
        store = InMemoryContextStore()
        # A pair, a five hour silence, then a trio inside the freshness window.
        store.add_messages(_messages_at([12, 11, 1.5, 1, 0.5]))
        generate = _generator()

        context = await _compressor(store, generate).get_compressed_context("u1", "t1")

        generate.assert_not_awaited()
        assert context.summarized_history == []

    @pytest.mark.asyncio
    async def test_small_group_does_not_block_later_groups(self) -> None:
        store = InMemoryContextStore()
        pairs = [40, 39, 33, 32, 26, 25]  # three pairs, each separated by more than 4h
        trio = [15, 14, 13]
        store.add_messages(_messages_at(pairs + trio))
        generate = _generator()

        context = await _compressor(store, generate).get_compressed_context(
            "u1",
            "t1",
            options={"level": "COMPREHENSIVE"},
        )

        assert generate.await_count == 1
        assert [s.message_count for s in context.summarized_history] == [3]

    @pytest.mark.asyncio
    async def test_at_most_three_groups_per_call(self) -> None:
        store = InMemoryContextStore()
        hours: list[float] = []
        for k in range(5):
            base = 3 + 7 * k
            hours.extend([base + 2, base + 1, base])
        store.add_messages(_messages_at(sorted(hours, reverse=True)))
        generate = _generator()
        compressor = _compressor(store, generate)

        await compressor.get_compressed_context("u1", "t1", options={"level": "COMPREHENSIVE"})
        assert generate.await_count == 3

        await compressor.get_compressed_context(
            "u1",
            "t1",
            options={"level": "COMPREHENSIVE", "force_refresh": True},
        )
        assert generate.await_count == 5
        assert len(store.summaries) == 5

    @pytest.mark.asyncio
    async def test_fallback_summaries_when_generation_unavailable(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([12, 11, 10, 9, 8]))
        compressor = _compressor(store, UnavailableGenerator())

        context = await compressor.get_compressed_context(
            "u1",
            "t1",
            options={"relevance_threshold": 0.3},
        )

        assert len(context.summarized_history) == 1
        summary = context.summarized_history[0]
        assert summary.key_topics == ["general_conversation"]
        assert summary.relevance_score == 0.3

    @pytest.mark.asyncio
    async def test_persist_failure_still_returns_summary(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([12, 11, 10]))
        with patch.object(
            store,
            "insert_summary",
            AsyncMock(side_effect=StoreError("disk full")),
        ):
            context = await _compressor(store).get_compressed_context("u1", "t1")
        assert len(context.summarized_history) == 1
        assert store.summaries == []

    @pytest.mark.asyncio
    async def test_summarizer_crash_is_contained(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([12, 11, 10, 1]))
        compressor = _compressor(store)
        with patch.object(
            compressor.summarizer,
            "summarize",
            AsyncMock(side_effect=RuntimeError("boom")),
        ):
            context = await compressor.get_compressed_context("u1", "t1")
        assert context.summarized_history == []
        assert [m.id for m in context.recent_messages][0] == "m3"

    @pytest.mark.asyncio
    async def test_merged_summaries_capped_and_ordered(self) -> None:
        store = InMemoryContextStore()
        await store.insert_summary(
            make_summary("older", start_hours_ago=40, end_hours_ago=38, created_hours_ago=30),
        )
        await store.insert_summary(
            make_summary("newer", start_hours_ago=35, end_hours_ago=33, created_hours_ago=20),
        )
        store.add_messages(_messages_at([12, 11, 10]))

        context = await _compressor(store).get_compressed_context(
            "u1",
            "t1",
            options={"max_summaries": 2},
        )

        history = context.summarized_history
        assert len(history) == 2
        assert history[0].created_at == NOW
        assert history[1].id == "newer"


class TestCaching:
    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([20, 19, 18, 1]))
        compressor = _compressor(store)

        with patch.object(
            store,
            "fetch_recent_messages",
            wraps=store.fetch_recent_messages,
        ) as fetch:
            first = await compressor.get_compressed_context("u1", "t1")
            second = await compressor.get_compressed_context("u1", "t1")

        assert fetch.call_count == 1
        assert first.compression_metadata.cache_hit is False
        assert second.compression_metadata.cache_hit is True
        assert second.recent_messages == first.recent_messages
        assert second.summarized_history == first.summarized_history
        assert second.total_tokens_estimate == first.total_tokens_estimate

    @pytest.mark.asyncio
    async def test_cached_copy_is_isolated_from_callers(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([1]))
        compressor = _compressor(store)

        first = await compressor.get_compressed_context("u1", "t1")
        first.recent_messages.clear()
        second = await compressor.get_compressed_context("u1", "t1")
        third = await compressor.get_compressed_context("u1", "t1")

        assert len(second.recent_messages) == 1
        assert third.compression_metadata.cache_hit is True

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self) -> None:
        store = InMemoryContextStore()
        store.add_messages(_messages_at([1]))
        compressor = _compressor(store)

        await compressor.get_compressed_context("u1", "t1")
        store.add_messages([make_message(5, hours_ago=0.1)])
        refreshed = await compressor.get_compressed_context(
            "u1",
            "t1",
            options={"force_refresh": True},
        )
        assert refreshed.compression_metadata.cache_hit is False
        assert [m.id for m in refreshed.recent_messages] == ["m5", "m0"]

    @pytest.mark.asyncio
    async def test_expired_entry_is_recomputed(self) -> None:
        ticks = [0.0]
        store = InMemoryContextStore()
        summarizer = ContextSummarizer(_generator(), clock=lambda: NOW)
        compressor = SmartContextCompressor(
            store,
            summarizer,
            cache=ContextCache(300, clock=lambda: ticks[0]),
            clock=lambda: NOW,
        )
        await compressor.get_compressed_context("u1", "t1")
        ticks[0] = 301.0
        again = await compressor.get_compressed_context("u1", "t1")
        assert again.compression_metadata.cache_hit is False

    @pytest.mark.asyncio
    async def test_clear_cache(self) -> None:
        compressor = _compressor(InMemoryContextStore())
        await compressor.get_compressed_context("u1", "t1")
        assert compressor.cache.size() == 1
        compressor.clear_cache()
        assert compressor.cache.size() == 0
        again = await compressor.get_compressed_context("u1", "t1")
        assert again.compression_metadata.cache_hit is False


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_over_last_day(self) -> None:
        store = InMemoryContextStore()
        await store.insert_summary(
            make_summary("recent", start_hours_ago=5, end_hours_ago=4, created_hours_ago=2),
        )
        await store.insert_summary(
            make_summary("stale", start_hours_ago=60, end_hours_ago=50, created_hours_ago=48),
        )
        compressor = _compressor(store)
        await compressor.get_compressed_context("u1", "t1")

        stats = await compressor.get_compression_stats()

        assert stats.cache_size == 1
        assert stats.total_summaries == 1
        # 120 characters over 4 messages
        assert stats.avg_compression_ratio == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_stats_without_summaries(self) -> None:
        stats = await _compressor(InMemoryContextStore()).get_compression_stats()
        assert stats.total_summaries == 0
        assert stats.avg_compression_ratio == 0.0

    @pytest.mark.asyncio
    async def test_stats_on_store_failure(self) -> None:
        stats = await _compressor(_failing_store()).get_compression_stats()
        assert stats.total_summaries == 0
        assert stats.cache_size == 0
