"""Unit tests for ThreadParser and the header helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from inbox_buddy.core.exceptions import ParseError
from inbox_buddy.core.parser import (
    NO_SUBJECT,
    UNKNOWN_SENDER,
    ThreadParser,
    hours_between,
    parse_date,
    parse_sender_name,
)
from builders import NOW, make_message, make_thread


@pytest.fixture
def parser() -> ThreadParser:
    """Fresh ThreadParser instance."""
    return ThreadParser()


# ---------- parse_sender_name ----------


class TestParseSenderName:
    """Display name extraction from From headers."""

    def test_name_and_address(self) -> None:
        assert parse_sender_name("Alice Example <alice@example.com>") == "Alice Example"

    def test_quoted_name(self) -> None:
        assert parse_sender_name('"Bob, Accounts" <bob@example.com>') == "Bob, Accounts"

    def test_bare_address(self) -> None:
        assert parse_sender_name("carol@example.com") == "carol@example.com"

    def test_empty_header(self) -> None:
        assert parse_sender_name("   ") == UNKNOWN_SENDER


# ---------- parse_date ----------


class TestParseDate:
    """RFC 2822 date parsing with a fallback."""

    def test_valid_date(self) -> None:
        parsed = parse_date("Mon, 03 Jun 2024 11:00:00 +0000", NOW)
        assert parsed == datetime(2024, 6, 3, 11, 0, 0, tzinfo=UTC)

    def test_offset_preserved(self) -> None:
        parsed = parse_date("Mon, 03 Jun 2024 13:00:00 +0200", NOW)
        assert parsed == datetime(2024, 6, 3, 11, 0, 0, tzinfo=UTC)

    def test_unknown_zone_taken_as_utc(self) -> None:
        parsed = parse_date("Mon, 03 Jun 2024 11:00:00 -0000", NOW)
        assert parsed.tzinfo is not None
        assert parsed == datetime(2024, 6, 3, 11, 0, 0, tzinfo=UTC)

    def test_missing_header_falls_back_to_now(self) -> None:
        assert parse_date("", NOW) == NOW

    def test_garbage_falls_back_to_now(self) -> None:
        assert parse_date("not a date at all", NOW) == NOW


class TestHoursBetween:
    """Elapsed hours, clamped at zero."""

    def test_past(self) -> None:
        assert hours_between(NOW - timedelta(hours=2), NOW) == pytest.approx(2.0)

    def test_future_is_zero(self) -> None:
        assert hours_between(NOW + timedelta(hours=1), NOW) == 0.0


# ---------- ThreadParser ----------


class TestThreadParser:
    """Thread summaries from the last message."""

    def test_single_message_thread(self, parser: ThreadParser) -> None:
        raw = make_thread("t1", snippet="Snip", labels=("INBOX", "UNREAD", "STARRED"))
        summary = parser.parse(raw, NOW)

        assert summary.thread_id == "t1"
        assert summary.last_message_id == "t1-m1"
        assert summary.subject == "Hello"
        assert summary.sender_raw == "Alice Example <alice@example.com>"
        assert summary.sender_display_name == "Alice Example"
        assert summary.raw_date_header == "Mon, 03 Jun 2024 11:00:00 +0000"
        assert summary.parsed_timestamp == NOW - timedelta(hours=1)
        assert summary.snippet == "Snip"
        assert summary.is_unread is True
        assert summary.is_starred is True
        assert summary.is_important is False
        assert summary.message_count == 1

    def test_uses_last_message(self, parser: ThreadParser) -> None:
        raw = make_thread(
            "t2",
            messages=[
                make_message("m1", subject="Original", labels=("INBOX",)),
                make_message(
                    "m2",
                    subject="Re: Original",
                    sender="Dan <dan@example.com>",
                    labels=("INBOX", "IMPORTANT"),
                ),
            ],
        )
        summary = parser.parse(raw, NOW)

        assert summary.last_message_id == "m2"
        assert summary.subject == "Re: Original"
        assert summary.sender_display_name == "Dan"
        assert summary.is_important is True
        assert summary.is_unread is False
        assert summary.message_count == 2

    def test_missing_headers_use_placeholders(self, parser: ThreadParser) -> None:
        message = {"id": "m1", "labelIds": [], "payload": {"headers": []}}
        summary = parser.parse({"id": "t3", "messages": [message]}, NOW)

        assert summary.subject == NO_SUBJECT
        assert summary.sender_raw == UNKNOWN_SENDER
        assert summary.sender_display_name == UNKNOWN_SENDER
        assert summary.parsed_timestamp == NOW

    def test_snippet_falls_back_to_message(self, parser: ThreadParser) -> None:
        message = make_message("m1")
        message["snippet"] = "from the message"
        summary = parser.parse({"id": "t4", "messages": [message]}, NOW)
        assert summary.snippet == "from the message"

    def test_header_names_case_insensitive(self, parser: ThreadParser) -> None:
        message = {
            "id": "m1",
            "payload": {"headers": [{"name": "SUBJECT", "value": "Loud"}]},
        }
        assert parser.parse({"id": "t5", "messages": [message]}, NOW).subject == "Loud"

    def test_no_messages_raises(self, parser: ThreadParser) -> None:
        with pytest.raises(ParseError, match="t6"):
            parser.parse({"id": "t6", "messages": []}, NOW)

    def test_no_id_raises(self, parser: ThreadParser) -> None:
        with pytest.raises(ParseError):
            parser.parse({"messages": [make_message("m1")]}, NOW)
