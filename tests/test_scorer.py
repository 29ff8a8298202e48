"""Unit tests for PriorityScorer and its component point functions."""

from __future__ import annotations

from dataclasses import replace

import pytest

from inbox_buddy.core.models import ScoringFactors
from inbox_buddy.core.scorer import (
    MAX_SCORE,
    FlagWeights,
    PriorityScorer,
    content_length_points,
    keyword_points,
    recency_points,
    sender_points,
    special_content_points,
)


def _factors(**overrides: object) -> ScoringFactors:
    fields: dict[str, object] = {
        "is_unread": False,
        "is_important": False,
        "is_starred": False,
        "hours_since_received": 1000.0,
        "subject": "",
        "content": "",
        "sender": "",
    }
    fields.update(overrides)
    return ScoringFactors(**fields)  # type: ignore[arg-type]


# ---------- recency ----------


class TestRecencyPoints:
    """Step schedule for message age."""

    @pytest.mark.parametrize(
        ("hours", "expected"),
        [
            (0.0, 45),
            (0.49, 45),
            (0.5, 40),
            (1.0, 30),
            (2.9, 30),
            (3.0, 25),
            (6.0, 20),
            (12.0, 15),
            (24.0, 8),
            (72.0, 3),
            (168.0, 0),
            (5000.0, 0),
        ],
    )
    def test_schedule(self, hours: float, expected: int) -> None:
        assert recency_points(hours) == expected

    def test_never_increases_with_age(self) -> None:
        hours = [0, 0.25, 0.75, 2, 4, 8, 18, 48, 100, 200, 1000]
        points = [recency_points(h) for h in hours]
        assert points == sorted(points, reverse=True)


# ---------- keywords ----------


class TestKeywordPoints:
    """First matching group wins; matches are capped at two."""

    def test_single_critical_match(self) -> None:
        assert keyword_points("urgent: server down") == 50

    def test_matches_capped_at_two(self) -> None:
        assert keyword_points("urgent asap emergency") == 100

    def test_tiers_do_not_stack(self) -> None:
        assert keyword_points("urgent payment for the meeting") == 50

    def test_high_tier_double_match(self) -> None:
        assert keyword_points("payment invoice from your bank") == 70

    def test_medium_tier(self) -> None:
        assert keyword_points("thanks for lunch") == 10

    def test_no_match(self) -> None:
        assert keyword_points("lunch on friday") == 0


# ---------- sender ----------


class TestSenderPoints:
    """Trusted patterns are checked before spam patterns."""

    @pytest.mark.parametrize(
        ("sender", "expected"),
        [
            ("PayPal", 15),
            ("Google Marketing", 15),
            ("noreply@github.com", 10),
            ("Acme Newsletter", -8),
            ("no-reply@shop.example", -5),
            ("Bulk Mailer", -10),
            ("Bob", 0),
            ("", 0),
        ],
    )
    def test_patterns(self, sender: str, expected: int) -> None:
        assert sender_points(sender) == expected


# ---------- content ----------


class TestContentPoints:
    """Cumulative length bonuses and special-content bonuses."""

    @pytest.mark.parametrize(
        ("length", "expected"),
        [(0, 0), (50, 0), (51, 3), (201, 8), (501, 16), (1001, 26)],
    )
    def test_length_bonuses(self, length: int, expected: int) -> None:
        assert content_length_points("x" * length) == expected

    def test_link_bonus(self) -> None:
        assert special_content_points("see http://example.org") == 5

    def test_digit_run_bonus(self) -> None:
        assert special_content_points("your code is 123456") == 5

    def test_short_digit_run_ignored(self) -> None:
        assert special_content_points("room 123") == 0

    def test_at_sign_bonus(self) -> None:
        assert special_content_points("write to a@b") == 3


# ---------- PriorityScorer ----------


class TestPriorityScorer:
    """End-to-end scoring."""

    def test_unread_recent_urgent(self) -> None:
        factors = _factors(
            is_unread=True,
            hours_since_received=0.2,
            subject="Urgent: server down",
            sender="Alice",
        )
        assert PriorityScorer().score(factors) == 155

    def test_deterministic(self) -> None:
        scorer = PriorityScorer()
        factors = _factors(is_unread=True, hours_since_received=5, subject="Invoice 2024")
        assert scorer.score(factors) == scorer.score(factors)

    def test_clamped_to_max(self) -> None:
        factors = _factors(
            is_unread=True,
            is_important=True,
            is_starred=True,
            hours_since_received=0.1,
            subject="urgent asap",
        )
        assert PriorityScorer().score(factors) == MAX_SCORE

    def test_clamped_to_zero(self) -> None:
        assert PriorityScorer().score(_factors(sender="Bulk Mailer")) == 0

    @pytest.mark.parametrize("flag", ["is_unread", "is_important", "is_starred"])
    def test_setting_a_flag_never_lowers_score(self, flag: str) -> None:
        scorer = PriorityScorer()
        base = _factors(hours_since_received=4, subject="meeting notes", sender="Bob")
        assert scorer.score(replace(base, **{flag: True})) > scorer.score(base)

    def test_flag_weights_ordered(self) -> None:
        scorer = PriorityScorer()
        unread = scorer.score(_factors(is_unread=True))
        important = scorer.score(_factors(is_important=True))
        starred = scorer.score(_factors(is_starred=True))
        assert unread >= important >= starred

    def test_custom_flag_weights(self) -> None:
        scorer = PriorityScorer(FlagWeights(unread=10, important=5, starred=1))
        assert scorer.score(_factors(is_unread=True, is_starred=True)) == 11


class TestFlagWeights:
    """Validation of the flag ordering."""

    def test_defaults(self) -> None:
        weights = FlagWeights()
        assert (weights.unread, weights.important, weights.starred) == (60, 50, 40)

    def test_rejects_inverted_order(self) -> None:
        with pytest.raises(ValueError, match="unread >= important"):
            FlagWeights(unread=10, important=20, starred=5)

    def test_rejects_negative(self) -> None:
        with pytest.raises(ValueError):
            FlagWeights(unread=10, important=5, starred=-1)
