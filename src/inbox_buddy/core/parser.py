"""Gmail thread parser: last-message headers, sender names, dates and flags."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from inbox_buddy.core.exceptions import ParseError
from inbox_buddy.core.models import ThreadSummary

logger = logging.getLogger(__name__)

NO_SUBJECT = "No Subject"
UNKNOWN_SENDER = "Unknown"

_NAME_ADDR_RE = re.compile(r"^(.*?)\s*<(.+)>$")


def parse_sender_name(from_header: str) -> str:
    """Return the display name of a ``Name <email>`` header.

    Falls back to the raw header (without quotes) when there is no name part.
    """
    value = from_header.strip()
    if not value:
        return UNKNOWN_SENDER
    match = _NAME_ADDR_RE.match(value)
    name = match.group(1) if match and match.group(1) else value
    name = name.replace('"', "").strip()
    return name or UNKNOWN_SENDER


def parse_date(date_str: str, now: datetime) -> datetime:
    """Parse an RFC 2822 date header into an aware datetime.

    Args:
        date_str: Email date header value.
        now: Fallback used when the header is missing or unparseable.

    Returns:
        Parsed datetime (naive values are taken as UTC), or ``now``.
    """
    if not date_str:
        return now
    try:
        parsed = parsedate_to_datetime(date_str)
    except (TypeError, ValueError, IndexError):
        logger.debug("Failed to parse date: %s", date_str)
        return now
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def hours_between(earlier: datetime, now: datetime) -> float:
    """Hours elapsed since ``earlier``; dates in the future count as zero."""
    return max((now - earlier).total_seconds() / 3600, 0.0)


class ThreadParser:
    """Parses Gmail thread resources into ThreadSummary objects."""

    def parse(self, raw_thread: dict[str, Any], now: datetime) -> ThreadSummary:
        """Summarize a thread from the headers and labels of its last message.

        Args:
            raw_thread: Thread dict from the Gmail API (format=metadata or full).
            now: Fetch time, used as the date fallback.

        Raises:
            ParseError: If the thread has no messages.
        """
        thread_id = raw_thread.get("id", "")
        messages = raw_thread.get("messages") or []
        if not thread_id or not messages:
            raise ParseError(f"Thread {thread_id or '?'} has no messages")

        last_message = messages[-1]
        headers = self._extract_headers(last_message.get("payload") or {})
        label_ids = set(last_message.get("labelIds") or [])

        sender_raw = headers.get("from") or UNKNOWN_SENDER
        date_header = headers.get("date", "")

        return ThreadSummary(
            thread_id=thread_id,
            last_message_id=last_message.get("id", ""),
            subject=headers.get("subject") or NO_SUBJECT,
            sender_raw=sender_raw,
            sender_display_name=parse_sender_name(sender_raw),
            raw_date_header=date_header,
            parsed_timestamp=parse_date(date_header, now),
            snippet=raw_thread.get("snippet") or last_message.get("snippet", ""),
            is_unread="UNREAD" in label_ids,
            is_important="IMPORTANT" in label_ids,
            is_starred="STARRED" in label_ids,
            message_count=len(messages),
        )

    @staticmethod
    def _extract_headers(payload: dict[str, Any]) -> dict[str, str]:
        headers: dict[str, str] = {}
        for h in payload.get("headers", []):
            name = h.get("name", "").lower()
            if name in ("subject", "from", "date"):
                headers[name] = h.get("value", "")
        return headers
