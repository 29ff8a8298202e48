"""Fetch stage: list inbox threads, fetch detail in bounded batches, build scored Emails."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import UTC, datetime

from inbox_buddy.config.settings import InboxBuddySettings
from inbox_buddy.core.exceptions import ParseError, RemoteTransientError
from inbox_buddy.core.extractor import ContentExtractor
from inbox_buddy.core.gmail_client import GmailClient
from inbox_buddy.core.models import Email, ScoringFactors, ThreadStub, ThreadSummary
from inbox_buddy.core.parser import ThreadParser, hours_between
from inbox_buddy.core.ranking import sort_emails
from inbox_buddy.core.scorer import PriorityScorer

logger = logging.getLogger(__name__)

NO_CONTENT = "No content available"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def rescore(email: Email, scorer: PriorityScorer, now: datetime) -> Email:
    """Return a copy of ``email`` with its age and score recomputed at ``now``."""
    aged = replace(email, hours_since_received=hours_between(email.parsed_timestamp, now))
    return replace(aged, priority_score=scorer.score(aged.scoring_factors()))


class FetchStage:
    """Turns Gmail threads into scored Email records.

    Two entry points share the same batching:

    - ``fetch_batch``: instant path. The first ``max_detailed_content`` threads get
      full content extraction, the rest keep their snippet.
    - ``enrich_threads``: background path. Every thread is pre-scored on its
      snippet; only those above ``deep_extraction_threshold`` get full extraction
      and a final re-score.

    A thread that fails to fetch or parse is dropped; ``AuthError`` always propagates.
    """

    def __init__(
        self,
        client: GmailClient,
        settings: InboxBuddySettings | None = None,
        *,
        parser: ThreadParser | None = None,
        extractor: ContentExtractor | None = None,
        scorer: PriorityScorer | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._client = client
        self._settings = settings or InboxBuddySettings()
        self._parser = parser or ThreadParser()
        self._extractor = extractor or ContentExtractor(self._settings.content_char_budget)
        self._scorer = scorer or PriorityScorer()
        self._clock = clock

    @property
    def client(self) -> GmailClient:
        return self._client

    def list_threads(self, max_results: int, query: str | None = None) -> list[ThreadStub]:
        """List up to ``max_results`` distinct inbox threads, most recent first."""
        stubs = self._client.list_thread_ids(max_results, query or self._settings.inbox_query)
        unique: dict[str, ThreadStub] = {}
        for stub in stubs:
            unique.setdefault(stub.thread_id, stub)
        return list(unique.values())

    def fetch_batch(self, max_results: int, query: str | None = None) -> list[Email]:
        """Instant path: list, fetch and score up to ``max_results`` threads.

        Returns:
            Emails sorted by score (desc) then timestamp (desc), one per thread.

        Raises:
            AuthError: If the credentials are rejected.
            RemoteTransientError: If the thread listing itself failed.
        """
        stubs = self.list_threads(max_results, query)

        logger.info("Processing %d threads for instant analysis", len(stubs))
        detailed_budget = self._settings.max_detailed_content
        positions = {stub.thread_id: i for i, stub in enumerate(stubs)}
        emails: list[Email] = []

        for batch in self._iter_batches(
            stubs,
            self._settings.instant_batch_size,
            self._settings.instant_batch_delay_seconds,
        ):
            summaries = self._fetch_summaries(batch)
            detailed = [s for s in summaries if positions[s.thread_id] < detailed_budget]
            contents = self._extract_contents(detailed)
            now = self._clock()
            for summary in summaries:
                content = contents.get(summary.thread_id, "")
                emails.append(
                    self._build_email(summary, content, now, background=False, stage=0)
                )

        return list(sort_emails(emails))

    def enrich_threads(self, stubs: list[ThreadStub], stage: int) -> list[Email]:
        """Background path: cheap snippet pre-score, selective full extraction.

        Args:
            stubs: Threads belonging to this stage.
            stage: 1-based stage number recorded on every produced Email.

        Raises:
            AuthError: If the credentials are rejected.
        """
        threshold = self._settings.deep_extraction_threshold
        emails: list[Email] = []

        for batch in self._iter_batches(
            stubs,
            self._settings.background_batch_size,
            self._settings.background_batch_delay_seconds,
        ):
            summaries = self._fetch_summaries(batch)
            now = self._clock()

            # Phase 1: pre-score every thread on its snippet
            pre_scored = [
                (summary, self._scorer.score(self._factors(summary, summary.snippet, now)))
                for summary in summaries
            ]
            # Phase 2: full extraction only above the threshold
            worth_extracting = [s for s, pre_score in pre_scored if pre_score > threshold]
            contents = self._extract_contents(worth_extracting)

            for summary, _ in pre_scored:
                content = contents.get(summary.thread_id, "")
                emails.append(
                    self._build_email(summary, content, now, background=True, stage=stage)
                )

        logger.info(
            "Stage %d: %d threads processed, %d with full content",
            stage, len(emails), sum(1 for e in emails if e.has_full_content),
        )
        return emails

    def _iter_batches(
        self, stubs: list[ThreadStub], batch_size: int, delay: float
    ) -> Iterator[list[ThreadStub]]:
        """Yield fixed-size batches, sleeping between them."""
        size = max(batch_size, 1)
        for offset in range(0, len(stubs), size):
            if offset and delay > 0:
                time.sleep(delay)
            yield stubs[offset:offset + size]

    def _fetch_summaries(self, batch: list[ThreadStub]) -> list[ThreadSummary]:
        """Fetch thread metadata for one batch, dropping threads that fail."""
        try:
            raw_threads = self._client.fetch_threads_batch([stub.thread_id for stub in batch])
        except RemoteTransientError as e:
            logger.error("Skipping batch of %d threads: %s", len(batch), e)
            return []

        now = self._clock()
        summaries: list[ThreadSummary] = []
        for stub in batch:
            raw_thread = raw_threads.get(stub.thread_id)
            if raw_thread is None:
                logger.warning("Thread %s not returned in batch response", stub.thread_id)
                continue
            try:
                summary = self._parser.parse(raw_thread, now)
            except ParseError as e:
                logger.warning("Dropping thread %s: %s", stub.thread_id, e)
                continue
            if not summary.snippet and stub.snippet:
                summary = replace(summary, snippet=stub.snippet)
            summaries.append(summary)
        return summaries

    def _extract_contents(self, summaries: list[ThreadSummary]) -> dict[str, str]:
        """Fetch full last messages and extract their text, keyed by thread id.

        Threads whose message could not be fetched or yielded no text are absent.
        """
        by_message = {s.last_message_id: s.thread_id for s in summaries if s.last_message_id}
        if not by_message:
            return {}

        try:
            raw_messages = self._client.fetch_messages_batch(list(by_message))
        except RemoteTransientError as e:
            logger.warning("Full content fetch failed, keeping snippets: %s", e)
            return {}

        contents: dict[str, str] = {}
        for message_id, raw_message in raw_messages.items():
            text = self._extractor.extract(raw_message)
            if text:
                contents[by_message[message_id]] = text
        return contents

    def _factors(self, summary: ThreadSummary, content: str, now: datetime) -> ScoringFactors:
        return ScoringFactors(
            is_unread=summary.is_unread,
            is_important=summary.is_important,
            is_starred=summary.is_starred,
            hours_since_received=hours_between(summary.parsed_timestamp, now),
            subject=summary.subject,
            content=content,
            sender=summary.sender_display_name,
        )

    def _build_email(
        self,
        summary: ThreadSummary,
        content: str,
        now: datetime,
        *,
        background: bool,
        stage: int,
    ) -> Email:
        body = content or summary.snippet
        factors = self._factors(summary, body, now)
        return Email(
            id=summary.thread_id,
            subject=summary.subject,
            sender_display_name=summary.sender_display_name,
            sender_raw=summary.sender_raw,
            raw_date_header=summary.raw_date_header,
            parsed_timestamp=summary.parsed_timestamp,
            hours_since_received=factors.hours_since_received,
            body_text=body or NO_CONTENT,
            snippet=summary.snippet,
            is_unread=summary.is_unread,
            is_important=summary.is_important,
            is_starred=summary.is_starred,
            priority_score=self._scorer.score(factors),
            message_count=summary.message_count,
            has_full_content=bool(content),
            is_background_processed=background,
            processing_stage=stage,
            last_message_id=summary.last_message_id,
        )
