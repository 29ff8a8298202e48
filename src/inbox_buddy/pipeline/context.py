"""Bounded, human-readable inbox summaries for the assistant's system prompt."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from datetime import datetime
from typing import Protocol

from inbox_buddy.core.models import Email, InstantResult

CRITICAL_SCORE = 150
HIGH_SCORE = 100
RECENT_HOURS = 24

OTP_TERMS = ("otp", "code", "verification")
FINANCIAL_TERMS = ("payment", "invoice", "money", "bank")
MEETING_TERMS = ("meeting", "call", "zoom")

NO_ACCESS_CONTEXT = "No Gmail access. Sign in with Google to enable inbox analysis."
NO_DATA_CONTEXT = "Unable to access email data. Please make sure you're signed in with Google."


class TextGenerationSink(Protocol):
    """Anything that turns a system prompt and chat history into streamed text."""

    def stream(self, system_prompt: str, history: Sequence[dict[str, str]]) -> Iterator[str]: ...


def _mentions(email: Email, terms: tuple[str, ...]) -> bool:
    content = email.body_text.lower()
    return any(term in content for term in terms)


def priority_label(score: int) -> str:
    if score > CRITICAL_SCORE:
        return "CRITICAL"
    if score > HIGH_SCORE:
        return "HIGH PRIORITY"
    return ""


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _format_email(index: int, email: Email, content_chars: int) -> str:
    flags = [
        "UNREAD" if email.is_unread else "READ",
        *(["IMPORTANT"] if email.is_important else []),
        *(["STARRED"] if email.is_starred else []),
        "FULL CONTENT" if email.has_full_content else "SNIPPET",
    ]
    label = priority_label(email.priority_score)
    if label:
        flags.append(label)

    return "\n".join([
        f"{index}. [{', '.join(flags)}] Priority Score: {email.priority_score}",
        f'   Subject: "{email.subject}"',
        f"   From: {email.sender_display_name}",
        f"   Date: {email.parsed_timestamp:%Y-%m-%d} ({email.hours_since_received:.0f}h ago)",
        f"   Content: {_truncate(email.body_text, content_chars)}",
    ])


def build_email_context(
    result: InstantResult | None,
    now: datetime,
    *,
    top_n: int = 15,
    content_chars: int = 350,
) -> str:
    """Summarize the best available email set for the system prompt.

    Uses the enriched ``full_data`` once background work has produced it, the
    instant emails otherwise. Output size is bounded by ``top_n`` and
    ``content_chars``.
    """
    if result is None:
        return NO_ACCESS_CONTEXT

    snapshot = result.snapshot
    emails: Sequence[Email] = result.emails
    if snapshot is not None and snapshot.full_data:
        emails = snapshot.full_data
    if not emails:
        return NO_DATA_CONTEXT

    instant_count = len(result.emails)
    total = max(snapshot.total_processed if snapshot else 0, len(emails))
    if snapshot is not None:
        progress = (
            f"stage {snapshot.current_stage}/{snapshot.total_stages} "
            + ("(in progress)" if snapshot.is_refreshing else "(complete)")
        )
        cache_line = (
            f"{result.status.value}, {snapshot.age_seconds(now):.0f}s old, "
            f"{snapshot.access_count} accesses"
        )
    else:
        progress = "not started"
        cache_line = result.status.value

    overview = [
        f"EMAIL ANALYSIS ({instant_count} instant + {total - instant_count} background "
        f"= {total} total)",
        "",
        "OVERVIEW:",
        f"- Cache: {cache_line}",
        f"- Background processing: {progress}",
        f"- Unread: {sum(1 for e in emails if e.is_unread)}",
        f"- Important/Starred: {sum(1 for e in emails if e.is_important or e.is_starred)}",
        f"- Last {RECENT_HOURS} hours: "
        f"{sum(1 for e in emails if e.hours_since_received < RECENT_HOURS)}",
        f"- Full content analyzed: {sum(1 for e in emails if e.has_full_content)}",
        f"- Critical priority ({CRITICAL_SCORE}+): "
        f"{sum(1 for e in emails if e.priority_score > CRITICAL_SCORE)}",
        f"- High priority ({HIGH_SCORE}+): "
        f"{sum(1 for e in emails if e.priority_score > HIGH_SCORE)}",
        f"- OTP/Verification: {sum(1 for e in emails if _mentions(e, OTP_TERMS))}",
        f"- Financial: {sum(1 for e in emails if _mentions(e, FINANCIAL_TERMS))}",
        f"- Meetings: {sum(1 for e in emails if _mentions(e, MEETING_TERMS))}",
        "",
        "TOP PRIORITY EMAILS:",
    ]
    top = [
        _format_email(index, email, content_chars)
        for index, email in enumerate(emails[:top_n], start=1)
    ]
    return "\n".join(overview) + "\n" + "\n\n".join(top)


def build_system_prompt(user_name: str, account: str, connected: bool, context: str) -> str:
    """System prompt for the assistant, with the inbox context interpolated."""
    connection = "Connected" if connected else "Not connected"
    return (
        f"You are Inbox Buddy, an AI email assistant helping {user_name} ({account}).\n"
        f"Gmail connection: {connection}\n"
        "\n"
        f"EMAIL DATA:\n{context}\n"
        "\n"
        "GUIDELINES:\n"
        "- Be conversational, concise and genuinely helpful.\n"
        "- Ground every answer in the email data above; say so when it does not cover a "
        "question.\n"
        "- Extract concrete details on request: codes, amounts, dates, links, deadlines.\n"
        "- Explain prioritization using the priority scores.\n"
        "- When asked to write an email, present a draft and ask for confirmation. Never "
        "claim to have sent anything.\n"
    )
