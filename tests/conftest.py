"""Shared fixtures for Inbox Buddy tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import Any

import pytest

from inbox_buddy.config.settings import InboxBuddySettings
from inbox_buddy.core.models import Email
from builders import NOW, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """Clock frozen at NOW until advanced."""
    return FakeClock()


@pytest.fixture
def settings() -> InboxBuddySettings:
    """Small, delay-free settings."""
    return InboxBuddySettings(
        client_id="client-id",
        client_secret="client-secret",
        cache_ttl_seconds=900,
        freshness_threshold_seconds=180,
        max_cache_entries=10,
        instant_size=5,
        instant_batch_size=2,
        instant_batch_delay_seconds=0.0,
        max_detailed_content=2,
        background_target_size=10,
        progressive_stages=2,
        background_batch_size=3,
        background_batch_delay_seconds=0.0,
        deep_extraction_threshold=60,
        background_workers=2,
        max_retries=2,
        initial_backoff_seconds=0.01,
        max_backoff_seconds=0.05,
        inter_page_delay_seconds=0.0,
        num_retries=0,
    )


@pytest.fixture
def make_email() -> Callable[..., Email]:
    """Factory for Email records with sensible defaults."""

    def _make(email_id: str, score: int = 50, hours_ago: float = 1.0, **kwargs: Any) -> Email:
        fields: dict[str, Any] = {
            "id": email_id,
            "subject": f"Subject {email_id}",
            "sender_display_name": "Alice",
            "sender_raw": "Alice <alice@example.com>",
            "raw_date_header": "",
            "parsed_timestamp": NOW - timedelta(hours=hours_ago),
            "hours_since_received": hours_ago,
            "body_text": f"Body {email_id}",
            "snippet": f"Body {email_id}",
            "priority_score": score,
        }
        fields.update(kwargs)
        return Email(**fields)

    return _make
