"""Background enrichment: staged, deduplicated growth of cached email sets."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial

from inbox_buddy.config.settings import InboxBuddySettings
from inbox_buddy.core.exceptions import AuthError, InboxBuddyError
from inbox_buddy.core.models import TokenPair
from inbox_buddy.core.scorer import PriorityScorer
from inbox_buddy.pipeline.fetcher import FetchStage, rescore
from inbox_buddy.storage.cache_store import CacheEntry, CacheStore

logger = logging.getLogger(__name__)

FetchStageFactory = Callable[[TokenPair], FetchStage]


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class BackgroundJob:
    """Registry record for a running enrichment job."""

    key: str
    started_at: datetime
    target_size: int
    stage: int = 0


def stage_bounds(target_size: int, stages: int) -> list[tuple[int, int]]:
    """Split ``target_size`` into cumulative (start, end) slices, one per stage.

    Trailing stages that would be empty are left out.
    """
    if target_size <= 0 or stages <= 0:
        return []
    stage_size = math.ceil(target_size / stages)
    bounds = []
    for stage in range(stages):
        start = stage * stage_size
        end = min((stage + 1) * stage_size, target_size)
        if start >= end:
            break
        bounds.append((start, end))
    return bounds


class BackgroundScheduler:
    """Runs at most one enrichment job per cache key on a thread pool.

    Job lifecycle per key: Idle -> Running(stage 1..K) -> Idle. Failures end the
    job early without discarding stages already merged into the entry.
    """

    def __init__(
        self,
        store: CacheStore,
        fetch_stage_factory: FetchStageFactory,
        settings: InboxBuddySettings | None = None,
        *,
        scorer: PriorityScorer | None = None,
        executor: ThreadPoolExecutor | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings or InboxBuddySettings()
        self._store = store
        self._fetch_stage_factory = fetch_stage_factory
        self._scorer = scorer or PriorityScorer()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._settings.background_workers,
            thread_name_prefix="inbox-buddy-enrich",
        )
        self._clock = clock
        self._jobs: dict[str, BackgroundJob] = {}
        self._lock = threading.Lock()

    def enqueue(
        self,
        key: str,
        credentials: TokenPair,
        target_size: int | None = None,
    ) -> Future[None] | None:
        """Start enriching ``key`` in the background unless a job already owns it.

        Returns:
            The job's Future, or None when the call was a no-op (job already
            running, or no cache entry to enrich).
        """
        target = target_size or self._settings.background_target_size
        stages = self._settings.progressive_stages

        with self._lock:
            if key in self._jobs:
                logger.debug("Background enrichment already running for %s", key)
                return None
            entry = self._store.get(key)
            if entry is None:
                logger.debug("No cache entry for %s, nothing to enrich", key)
                return None
            if not entry.begin_refresh(stages):
                logger.debug("Cache entry %s is already refreshing", key)
                return None
            self._jobs[key] = BackgroundJob(key=key, started_at=self._clock(), target_size=target)

        logger.info("Queued background enrichment of %d emails for %s", target, key)
        try:
            return self._executor.submit(self._run, key, entry, credentials, target)
        except RuntimeError:
            # Executor already shut down
            self._release(key, entry, "scheduler is shut down")
            raise

    def is_running(self, key: str) -> bool:
        with self._lock:
            return key in self._jobs

    def running_keys(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _run(self, key: str, entry: CacheEntry, credentials: TokenPair, target: int) -> None:
        started = time.monotonic()
        error: str | None = None
        try:
            self._run_stages(key, entry, credentials, target)
        except AuthError as e:
            error = str(e)
            logger.warning(
                "Background enrichment for %s stopped, re-authentication needed: %s", key, e
            )
        except InboxBuddyError as e:
            error = str(e)
            logger.error("Background enrichment for %s failed: %s", key, e)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.exception("Unexpected error in background enrichment for %s", key)
            raise
        finally:
            self._release(key, entry, error)

        if error is not None:
            return
        snapshot = entry.snapshot()
        logger.info(
            "Background enrichment complete for %s: %d emails cached in %.1fs",
            key, snapshot.total_processed, time.monotonic() - started,
        )

    def _run_stages(
        self, key: str, entry: CacheEntry, credentials: TokenPair, target: int
    ) -> None:
        fetch_stage = self._fetch_stage_factory(credentials)
        bounds = stage_bounds(target, self._settings.progressive_stages)

        for stage, (start, end) in enumerate(bounds, start=1):
            if self._store.get(key) is not entry:
                logger.info("Cache entry %s was replaced or evicted, stopping enrichment", key)
                return

            self._set_stage(key, stage)
            logger.info(
                "Stage %d/%d: processing emails %d-%d for %s",
                stage, len(bounds), start + 1, end, key,
            )

            # threads.list is not cursor based: re-list up to the cumulative bound
            stubs = fetch_stage.list_threads(end)[start:]
            if not stubs:
                logger.info("Inbox exhausted after %d threads, stopping at stage %d", start, stage)
                return

            emails = fetch_stage.enrich_threads(stubs, stage)
            now = self._clock()
            total = entry.merge_stage(
                emails, stage, rescore=partial(rescore, scorer=self._scorer, now=now)
            )
            logger.info("Stage %d complete: %d emails cached for %s", stage, total, key)

    def _set_stage(self, key: str, stage: int) -> None:
        with self._lock:
            job = self._jobs.get(key)
            if job is not None:
                job.stage = stage

    def _release(self, key: str, entry: CacheEntry, error: str | None) -> None:
        entry.finish_refresh(self._clock(), error=error)
        with self._lock:
            self._jobs.pop(key, None)
