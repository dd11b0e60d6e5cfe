"""Tests for the message relevance heuristic."""

from __future__ import annotations

from datetime import timedelta

import pytest

from context_compressor.scoring import (
    decision_score,
    recency_score,
    role_score,
    score_message,
    topic_score,
)
from tests.factories import NOW, make_message


class TestRecency:
    def test_brand_new_message_scores_one(self) -> None:
        assert recency_score(NOW, NOW) == 1.0

    def test_one_week_old_scores_zero(self) -> None:
        assert recency_score(NOW - timedelta(hours=168), NOW) == 0.0

    def test_older_than_a_week_is_clamped(self) -> None:
        assert recency_score(NOW - timedelta(days=30), NOW) == 0.0

    def test_future_timestamp_is_clamped(self) -> None:
        assert recency_score(NOW + timedelta(hours=5), NOW) == 1.0

    def test_linear_decay(self) -> None:
        assert recency_score(NOW - timedelta(hours=84), NOW) == pytest.approx(0.5)


class TestTopic:
    def test_no_intent(self) -> None:
        assert topic_score("anything", None) == 0.0
        assert topic_score("anything", "") == 0.0

    def test_fraction_of_keywords(self) -> None:
        assert topic_score("Show me ORDER totals", "order_status") == pytest.approx(0.5)

    def test_all_keywords_match(self) -> None:
        assert topic_score("order status please", "order status") == 1.0

    def test_separator_only_intent(self) -> None:
        assert topic_score("content", "__  _") == 0.0


class TestRoleAndDecision:
    def test_user_outranks_assistant(self) -> None:
        assert role_score("user") == 0.8
        assert role_score("assistant") == 0.6

    def test_decision_keywords_add_up(self) -> None:
        assert decision_score("nothing to see") == 0.0
        assert decision_score("I decided and confirmed it") == pytest.approx(0.2)

    def test_decision_score_is_capped(self) -> None:
        text = " ".join(
            [
                "decided choose selected confirmed approved",
                "created updated changed set configured",
            ],
        )
        assert decision_score(text * 2) == 1.0


class TestScoreMessage:
    def test_fresh_user_message_without_intent(self) -> None:
        message = make_message(0, hours_ago=0, role="user", content="hello")
        # 1.0 * 0.30 + 0 + 0.8 * 0.25 + 0
        assert score_message(message, now=NOW) == pytest.approx(0.5)

    def test_old_assistant_message_without_intent(self) -> None:
        message = make_message(1, hours_ago=168, role="assistant", content="hello")
        assert score_message(message, now=NOW) == pytest.approx(0.15)

    def test_intent_and_decisions_raise_score(self) -> None:
        message = make_message(
            0,
            hours_ago=0,
            role="user",
            content="I approved the order refund",
        )
        plain = score_message(message, now=NOW)
        with_intent = score_message(message, "order_refund", now=NOW)
        assert with_intent > plain
        # 0.30 + 0.25 + 0.20 + 0.02
        assert with_intent == pytest.approx(0.77)

    def test_preferences_do_not_change_score(self) -> None:
        message = make_message(0, hours_ago=3, content="set the theme")
        assert score_message(message, "theme", {"tone": "formal"}, now=NOW) == score_message(
            message,
            "theme",
            now=NOW,
        )

    @pytest.mark.parametrize("hours_ago", [0, 1, 24, 168, 1000])
    def test_always_in_unit_interval(self, hours_ago: float) -> None:
        message = make_message(0, hours_ago=hours_ago, content="decided " * 20)
        assert 0.0 <= score_message(message, "decided", now=NOW) <= 1.0
