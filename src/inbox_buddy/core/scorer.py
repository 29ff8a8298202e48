"""Additive priority scoring for inbox threads."""

from __future__ import annotations

import re
from dataclasses import dataclass

from inbox_buddy.core.models import ScoringFactors

MIN_SCORE = 0
MAX_SCORE = 200


@dataclass(frozen=True)
class KeywordGroup:
    """Related terms sharing one weight."""

    words: tuple[str, ...]
    weight: int


@dataclass(frozen=True)
class FlagWeights:
    """Points for label-derived flags."""

    unread: int = 60
    important: int = 50
    starred: int = 40

    def __post_init__(self) -> None:
        if not self.unread >= self.important >= self.starred >= 0:
            raise ValueError(
                "Flag weights must satisfy unread >= important >= starred >= 0, "
                f"got {self.unread}/{self.important}/{self.starred}"
            )


# (upper bound in hours, points), checked in order
RECENCY_SCHEDULE: tuple[tuple[float, int], ...] = (
    (0.5, 45),
    (1, 40),
    (3, 30),
    (6, 25),
    (12, 20),
    (24, 15),
    (72, 8),
    (168, 3),
)

CRITICAL_KEYWORDS: tuple[KeywordGroup, ...] = (
    KeywordGroup(("urgent", "asap", "immediate", "emergency", "critical", "breaking"), 50),
    KeywordGroup(("deadline", "due today", "expires today", "expiring", "final notice"), 45),
    KeywordGroup(
        ("otp", "verification code", "authenticate", "login code", "security code"), 40
    ),
)

HIGH_KEYWORDS: tuple[KeywordGroup, ...] = (
    KeywordGroup(("payment", "invoice", "bill", "money", "transfer", "bank", "financial"), 35),
    KeywordGroup(
        ("meeting", "call", "appointment", "schedule", "zoom", "teams", "conference"), 30
    ),
    KeywordGroup(("interview", "job", "opportunity", "position", "offer"), 35),
    KeywordGroup(("contract", "agreement", "legal", "document", "signature"), 30),
    KeywordGroup(("error", "failed", "failure", "problem", "issue", "alert"), 30),
)

MEDIUM_KEYWORDS: tuple[KeywordGroup, ...] = (
    KeywordGroup(("update", "news", "announcement", "notification"), 15),
    KeywordGroup(("reminder", "follow up", "follow-up", "checking in"), 20),
    KeywordGroup(("thank you", "thanks", "appreciation", "feedback"), 10),
    KeywordGroup(("invitation", "event", "webinar", "workshop"), 18),
)

# Severity order: the first matching group wins, tiers never stack.
KEYWORD_TIERS: tuple[tuple[KeywordGroup, ...], ...] = (
    CRITICAL_KEYWORDS,
    HIGH_KEYWORDS,
    MEDIUM_KEYWORDS,
)

TRUSTED_SENDERS: tuple[KeywordGroup, ...] = (
    KeywordGroup(("bank", "paypal", "stripe", "amazon", "apple", "google"), 15),
    KeywordGroup(("noreply@github", "notifications@", "security@"), 10),
    KeywordGroup(("@company.com", "@work.com", "@corp.com"), 8),
)

SPAM_SENDERS: tuple[KeywordGroup, ...] = (
    KeywordGroup(("noreply", "no-reply", "donotreply"), -5),
    KeywordGroup(("marketing", "promo", "newsletter"), -8),
    KeywordGroup(("unsubscribe", "bulk", "mass"), -10),
)

# Cumulative: every threshold passed adds its bonus
CONTENT_LENGTH_BONUSES: tuple[tuple[int, int], ...] = (
    (50, 3),
    (200, 5),
    (500, 8),
    (1000, 10),
)

LINK_BONUS = 5
DIGIT_RUN_BONUS = 5
AT_SIGN_BONUS = 3
MAX_KEYWORD_MULTIPLIER = 2

_DIGIT_RUN_RE = re.compile(r"\d{4,}")


class PriorityScorer:
    """Maps scoring factors to an integer priority in [0, 200].

    Pure and deterministic: no I/O, no clock. Callers compute
    ``hours_since_received`` themselves.
    """

    def __init__(self, flag_weights: FlagWeights | None = None) -> None:
        self._flags = flag_weights or FlagWeights()

    def score(self, factors: ScoringFactors) -> int:
        combined = f"{factors.subject.lower()} {factors.content.lower()}"

        total = self._flag_points(factors)
        total += recency_points(factors.hours_since_received)
        total += keyword_points(combined)
        total += sender_points(factors.sender)
        total += content_length_points(factors.content)
        total += special_content_points(combined)

        return max(MIN_SCORE, min(total, MAX_SCORE))

    def _flag_points(self, factors: ScoringFactors) -> int:
        points = 0
        if factors.is_unread:
            points += self._flags.unread
        if factors.is_important:
            points += self._flags.important
        if factors.is_starred:
            points += self._flags.starred
        return points


def recency_points(hours_since_received: float) -> int:
    for upper_bound, points in RECENCY_SCHEDULE:
        if hours_since_received < upper_bound:
            return points
    return 0


def keyword_points(text: str) -> int:
    """Score the first matching keyword group, in severity order."""
    for tier in KEYWORD_TIERS:
        for group in tier:
            matches = sum(1 for word in group.words if word in text)
            if matches:
                return group.weight * min(matches, MAX_KEYWORD_MULTIPLIER)
    return 0


def sender_points(sender: str) -> int:
    """Trusted patterns are checked before spam patterns; first match only."""
    sender_lower = sender.lower()
    for group in (*TRUSTED_SENDERS, *SPAM_SENDERS):
        if any(pattern in sender_lower for pattern in group.words):
            return group.weight
    return 0


def content_length_points(content: str) -> int:
    length = len(content)
    return sum(bonus for threshold, bonus in CONTENT_LENGTH_BONUSES if length > threshold)


def special_content_points(text: str) -> int:
    points = 0
    if "http" in text:
        points += LINK_BONUS
    if _DIGIT_RUN_RE.search(text):
        points += DIGIT_RUN_BONUS
    if "@" in text:
        points += AT_SIGN_BONUS
    return points
