"""Global ordering and id-based merging of scored emails."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from inbox_buddy.core.models import Email


def sort_key(email: Email) -> tuple[int, datetime]:
    return (email.priority_score, email.parsed_timestamp)


def sort_emails(emails: Iterable[Email]) -> tuple[Email, ...]:
    """Score descending, ties broken by most recent first."""
    return tuple(sorted(emails, key=sort_key, reverse=True))


def merge_emails(existing: Iterable[Email], incoming: Iterable[Email]) -> tuple[Email, ...]:
    """Merge two email collections by id and return them in global order.

    Records already present win over incoming ones with the same id, so merging
    the same batch twice is a no-op.
    """
    merged: dict[str, Email] = {}
    for email in existing:
        merged.setdefault(email.id, email)
    for email in incoming:
        merged.setdefault(email.id, email)
    return sort_emails(merged.values())
