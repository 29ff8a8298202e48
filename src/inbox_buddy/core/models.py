"""Frozen dataclasses for the Inbox Buddy domain model."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from inbox_buddy.core.exceptions import AuthError


@dataclass(frozen=True)
class TokenPair:
    """OAuth tokens supplied by the caller for one Gmail account."""

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None


@dataclass(frozen=True)
class ThreadStub:
    """Lightweight thread reference from the Gmail threads.list API."""

    thread_id: str
    snippet: str = ""


@dataclass(frozen=True)
class ThreadSummary:
    """Header-level view of a thread, taken from its last message."""

    thread_id: str
    last_message_id: str
    subject: str
    sender_raw: str
    sender_display_name: str
    raw_date_header: str
    parsed_timestamp: datetime
    snippet: str
    is_unread: bool
    is_important: bool
    is_starred: bool
    message_count: int


@dataclass(frozen=True)
class ScoringFactors:
    """Signals fed to the priority scorer."""

    is_unread: bool
    is_important: bool
    is_starred: bool
    hours_since_received: float
    subject: str = ""
    content: str = ""
    sender: str = ""


@dataclass(frozen=True)
class Email:
    """A scored inbox thread, as served to the assistant."""

    id: str
    subject: str
    sender_display_name: str
    sender_raw: str
    raw_date_header: str
    parsed_timestamp: datetime
    hours_since_received: float
    body_text: str
    snippet: str
    is_unread: bool = False
    is_important: bool = False
    is_starred: bool = False
    priority_score: int = 0
    message_count: int = 1
    has_full_content: bool = False
    is_background_processed: bool = False
    processing_stage: int = 0
    last_message_id: str = ""

    def scoring_factors(self) -> ScoringFactors:
        """Build the factors used to (re)score this email."""
        return ScoringFactors(
            is_unread=self.is_unread,
            is_important=self.is_important,
            is_starred=self.is_starred,
            hours_since_received=self.hours_since_received,
            subject=self.subject,
            content=self.body_text,
            sender=self.sender_display_name,
        )


class CacheStatus(str, Enum):
    """How an instant request was served."""

    MISS = "miss"
    HIT = "hit"
    STALE = "stale"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class CacheSnapshot:
    """Consistent, read-only copy of a cache entry."""

    quick_data: tuple[Email, ...]
    full_data: tuple[Email, ...]
    created_at: datetime
    expires_at: datetime
    last_refreshed_at: datetime
    is_refreshing: bool
    access_count: int
    current_stage: int
    total_stages: int
    total_processed: int
    last_error: str | None = None

    def age_seconds(self, now: datetime) -> float:
        return max((now - self.created_at).total_seconds(), 0.0)

    @property
    def best_available(self) -> tuple[Email, ...]:
        """The enriched set once background work has produced one."""
        return self.full_data or self.quick_data


@dataclass(frozen=True)
class InstantResult:
    """Result of an interactive request for current email intelligence."""

    cache_key: str
    emails: tuple[Email, ...]
    status: CacheStatus
    snapshot: CacheSnapshot | None = None
    auth_error: AuthError | None = None
    refreshed_tokens: TokenPair | None = None

    @property
    def needs_auth(self) -> bool:
        return self.auth_error is not None
