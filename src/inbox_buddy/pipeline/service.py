"""Request path orchestrator: cache lookup -> instant fetch -> background enrichment."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from inbox_buddy.config.settings import InboxBuddySettings
from inbox_buddy.core.auth import CredentialProvider, build_gmail_service
from inbox_buddy.core.exceptions import AuthError, RemoteTransientError
from inbox_buddy.core.gmail_client import GmailClient
from inbox_buddy.core.models import CacheSnapshot, CacheStatus, InstantResult, TokenPair
from inbox_buddy.core.scorer import PriorityScorer
from inbox_buddy.pipeline.context import (
    TextGenerationSink,
    build_email_context,
    build_system_prompt,
)
from inbox_buddy.pipeline.fetcher import FetchStage
from inbox_buddy.pipeline.scheduler import BackgroundScheduler
from inbox_buddy.storage.cache_store import (
    CacheEntry,
    CacheStore,
    InMemoryCacheStore,
    make_cache_key,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[TokenPair], GmailClient]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class EmailIntelligenceService:
    """Serves "current email intelligence" for an account, fast.

    - Cache hit: the stored instant set is returned immediately; a background
      refresh is queued when the entry is stale and none is running.
    - Miss or expiry: a small instant set is fetched synchronously, cached, and
      background enrichment is queued to grow it in stages.
    """

    def __init__(
        self,
        settings: InboxBuddySettings | None = None,
        *,
        store: CacheStore | None = None,
        scheduler: BackgroundScheduler | None = None,
        credential_provider: CredentialProvider | None = None,
        client_factory: ClientFactory | None = None,
        scorer: PriorityScorer | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings or InboxBuddySettings()
        self._clock = clock
        self._scorer = scorer or PriorityScorer()
        self._credentials = credential_provider or CredentialProvider(
            self._settings.client_id,
            self._settings.client_secret,
            self._settings.token_uri,
        )
        self._client_factory = client_factory or self._build_client
        self._store = store or InMemoryCacheStore(
            self._settings.max_cache_entries,
            eviction_fraction=self._settings.eviction_fraction,
            access_weight=self._settings.eviction_access_weight,
            age_weight=self._settings.eviction_age_weight,
            clock=clock,
        )
        self._scheduler = scheduler or BackgroundScheduler(
            self._store,
            self.build_fetch_stage,
            self._settings,
            scorer=self._scorer,
            clock=clock,
        )

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    def _build_client(self, tokens: TokenPair) -> GmailClient:
        service = build_gmail_service(self._credentials.build_credentials(tokens))
        return GmailClient(
            service,
            self._settings.user_id,
            max_retries=self._settings.max_retries,
            initial_backoff_seconds=self._settings.initial_backoff_seconds,
            max_backoff_seconds=self._settings.max_backoff_seconds,
            inter_page_delay_seconds=self._settings.inter_page_delay_seconds,
            num_retries=self._settings.num_retries,
        )

    def build_fetch_stage(self, tokens: TokenPair) -> FetchStage:
        """Fetch stage bound to its own Gmail client for ``tokens``."""
        return FetchStage(
            self._client_factory(tokens),
            self._settings,
            scorer=self._scorer,
            clock=self._clock,
        )

    def get_instant_emails(
        self, tokens: TokenPair, account: str = "", *, background: bool = True
    ) -> InstantResult:
        """Return the instant email set for an account, never waiting on enrichment.

        Args:
            tokens: Caller-held OAuth tokens.
            account: Account address used in the cache key.
            background: Queue background enrichment on a miss or a stale hit.
                Short-lived callers pass False so nothing outlives the request.

        Authentication failures do not raise: they come back as an empty result
        with ``auth_error`` set so the caller can prompt for re-authentication.
        """
        key = make_cache_key(account, tokens.access_token)
        now = self._clock()

        entry = self._store.get(key)
        if entry is not None:
            if not entry.is_expired(now) and entry.quick_data:
                return self._serve_hit(key, entry, tokens, now, background)
            logger.info(
                "Cache expired for %s (age: %.0fs), rebuilding",
                key, (now - entry.created_at).total_seconds(),
            )
            self._store.delete(key)

        return self._serve_miss(key, tokens, now, background)

    def _serve_hit(
        self,
        key: str,
        entry: CacheEntry,
        tokens: TokenPair,
        now: datetime,
        background: bool,
    ) -> InstantResult:
        access_count = entry.touch()
        status = CacheStatus.HIT
        threshold = timedelta(seconds=self._settings.freshness_threshold_seconds)

        if entry.is_stale(now, threshold):
            status = CacheStatus.STALE
            if background and not entry.snapshot().is_refreshing:
                logger.info("Cache entry %s is stale, queuing background refresh", key)
                self._scheduler.enqueue(key, tokens)

        snapshot = entry.snapshot()
        logger.info(
            "Cache hit for %s: %d instant + %d total emails, accessed %d times",
            key, len(snapshot.quick_data), snapshot.total_processed, access_count,
        )
        return InstantResult(
            cache_key=key, emails=snapshot.quick_data, status=status, snapshot=snapshot
        )

    def _serve_miss(
        self, key: str, tokens: TokenPair, now: datetime, background: bool
    ) -> InstantResult:
        logger.info("Cache miss for %s, fetching %d emails", key, self._settings.instant_size)
        started = time.monotonic()

        try:
            refreshed = self._credentials.refresh_if_needed(tokens)
            active_tokens = refreshed or tokens
            emails = self.build_fetch_stage(active_tokens).fetch_batch(
                self._settings.instant_size
            )
        except AuthError as e:
            logger.warning("Authentication required for %s: %s", key, e)
            return InstantResult(
                cache_key=key, emails=(), status=CacheStatus.UNAVAILABLE, auth_error=e
            )
        except RemoteTransientError as e:
            logger.error("Instant fetch failed for %s: %s", key, e)
            return InstantResult(cache_key=key, emails=(), status=CacheStatus.UNAVAILABLE)

        entry = CacheEntry.create(
            emails, now, timedelta(seconds=self._settings.cache_ttl_seconds)
        )
        self._store.put(key, entry)
        self._store.evict_if_over_capacity(now)

        logger.info(
            "Instant analysis complete: %d emails in %.0fms, cached for %.0f minutes",
            len(emails), (time.monotonic() - started) * 1000,
            self._settings.cache_ttl_seconds / 60,
        )

        if emails and background:
            self._scheduler.enqueue(key, active_tokens)

        return InstantResult(
            cache_key=key,
            emails=entry.quick_data,
            status=CacheStatus.MISS,
            snapshot=entry.snapshot(),
            refreshed_tokens=refreshed,
        )

    def snapshot(self, key: str) -> CacheSnapshot | None:
        """Current state of a cache entry, including background progress."""
        entry = self._store.get(key)
        return entry.snapshot() if entry is not None else None

    def build_context(self, result: InstantResult | None) -> str:
        """Bounded context string for the assistant prompt.

        Re-reads the entry so progress made by background enrichment since the
        request started is included.
        """
        if result is not None:
            latest = self.snapshot(result.cache_key)
            if latest is not None:
                result = replace(result, snapshot=latest)
        return build_email_context(
            result,
            self._clock(),
            top_n=self._settings.context_top_n,
            content_chars=self._settings.context_content_chars,
        )

    def stream_chat(
        self,
        sink: TextGenerationSink,
        history: Sequence[dict[str, str]],
        result: InstantResult | None,
        *,
        user_name: str = "there",
        account: str = "",
    ) -> Iterator[str]:
        """Stream an assistant reply grounded in the current email context."""
        context = self.build_context(result)
        connected = result is not None and not result.needs_auth
        prompt = build_system_prompt(user_name, account, connected, context)
        yield from sink.stream(prompt, history)

    def close(self, wait: bool = False) -> None:
        """Stop accepting background work.

        Jobs already queued or running still complete: the interpreter joins the
        pool threads at exit even when ``wait`` is False.
        """
        self._scheduler.shutdown(wait=wait)
