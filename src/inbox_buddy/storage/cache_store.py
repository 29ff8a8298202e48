"""In-memory, time-boxed cache of per-account email result sets."""

from __future__ import annotations

import hashlib
import logging
import math
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from inbox_buddy.core.models import CacheSnapshot, Email
from inbox_buddy.core.ranking import merge_emails, sort_emails

logger = logging.getLogger(__name__)

TOKEN_SUFFIX_LENGTH = 12


def make_cache_key(account: str, access_token: str) -> str:
    """Derive the cache key for an account and its current access token.

    Only a short suffix of the token's SHA-256 digest is used, so the key never
    contains the credential but still changes whenever the token does.
    """
    digest = hashlib.sha256(access_token.encode("utf-8")).hexdigest()
    return f"emails:{account}:{digest[-TOKEN_SUFFIX_LENGTH:]}"


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class CacheEntry:
    """Cached email intelligence for one account+token key.

    Mutated in place by the background scheduler; every mutation and every
    snapshot holds the entry lock, so readers never see a half-applied merge.
    """

    quick_data: tuple[Email, ...]
    created_at: datetime
    expires_at: datetime
    last_refreshed_at: datetime
    full_data: tuple[Email, ...] = ()
    is_refreshing: bool = False
    access_count: int = 1
    current_stage: int = 0
    total_stages: int = 0
    total_processed: int = 0
    last_error: str | None = None
    _cycle_started: bool = field(default=False, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def create(cls, quick_data: Iterable[Email], now: datetime, ttl: timedelta) -> CacheEntry:
        """New entry for a freshly fetched instant set."""
        emails = merge_emails((), quick_data)
        return cls(
            quick_data=emails,
            created_at=now,
            expires_at=now + ttl,
            last_refreshed_at=now,
            total_processed=len(emails),
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_stale(self, now: datetime, threshold: timedelta) -> bool:
        """True once the last refresh is older than ``threshold``."""
        with self._lock:
            return now - self.last_refreshed_at > threshold

    def touch(self) -> int:
        """Record a read; returns the new access count."""
        with self._lock:
            self.access_count += 1
            return self.access_count

    def begin_refresh(self, total_stages: int) -> bool:
        """Claim the entry for a background job. False if one already owns it."""
        with self._lock:
            if self.is_refreshing:
                return False
            self.is_refreshing = True
            self.current_stage = 0
            self.total_stages = total_stages
            self.last_error = None
            self._cycle_started = True
            return True

    def merge_stage(
        self,
        emails: Iterable[Email],
        stage: int,
        rescore: Callable[[Email], Email] | None = None,
    ) -> int:
        """Merge one stage's emails into ``full_data`` and advance progress.

        The first merge of each refresh cycle starts over from ``quick_data``, so
        records fetched by this cycle replace those cached by earlier ones. Within
        a cycle the record already present wins. When ``rescore`` is given, the
        merged set is re-scored before it is re-sorted.

        Returns:
            Size of ``full_data`` after the merge.
        """
        with self._lock:
            base = self.quick_data if self._cycle_started else self.full_data or self.quick_data
            self._cycle_started = False
            merged = merge_emails(base, emails)
            if rescore is not None:
                merged = sort_emails(rescore(email) for email in merged)
            self.full_data = merged
            self.current_stage = max(self.current_stage, stage)
            self.total_processed = len(merged)
            return len(merged)

    def finish_refresh(self, now: datetime, error: str | None = None) -> None:
        """Release the entry. Only a successful run moves ``last_refreshed_at``."""
        with self._lock:
            self.is_refreshing = False
            self.last_error = error
            if error is None:
                self.last_refreshed_at = now

    def rank(self, now: datetime, access_weight: float, age_weight: float) -> float:
        """Eviction rank: frequently used, recently refreshed entries rank higher."""
        with self._lock:
            age_seconds = max((now - self.last_refreshed_at).total_seconds(), 0.0)
            return self.access_count * access_weight - age_seconds * age_weight

    def snapshot(self) -> CacheSnapshot:
        with self._lock:
            return CacheSnapshot(
                quick_data=self.quick_data,
                full_data=self.full_data,
                created_at=self.created_at,
                expires_at=self.expires_at,
                last_refreshed_at=self.last_refreshed_at,
                is_refreshing=self.is_refreshing,
                access_count=self.access_count,
                current_stage=self.current_stage,
                total_stages=self.total_stages,
                total_processed=self.total_processed,
                last_error=self.last_error,
            )


class CacheStore(ABC):
    """Keyed storage of CacheEntry objects with a capacity-driven eviction policy."""

    @abstractmethod
    def get(self, key: str) -> CacheEntry | None: ...

    @abstractmethod
    def put(self, key: str, entry: CacheEntry) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def keys(self) -> list[str]: ...

    @abstractmethod
    def __len__(self) -> int: ...

    @abstractmethod
    def evict_if_over_capacity(self, now: datetime | None = None) -> list[str]:
        """Drop the lowest-ranked entries once capacity is exceeded; return their keys."""


class InMemoryCacheStore(CacheStore):
    """Process-local CacheStore. Not shared between processes, lost on restart.

    Eviction approximates LFU with recency: entries are ranked by
    ``access_count * access_weight - age_seconds * age_weight`` and only the best
    ``ceil(capacity * (1 - eviction_fraction))`` survive.
    """

    def __init__(
        self,
        capacity: int = 100,
        *,
        eviction_fraction: float = 0.3,
        access_weight: float = 0.7,
        age_weight: float = 0.3,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if not 0 < eviction_fraction < 1:
            raise ValueError(f"eviction_fraction must be in (0, 1), got {eviction_fraction}")
        self._capacity = capacity
        self._eviction_fraction = eviction_fraction
        self._access_weight = access_weight
        self._age_weight = age_weight
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def retained_size(self) -> int:
        """Number of entries kept by an eviction pass."""
        # round() absorbs float error such as 10 * 0.7 == 7.000000000000001
        return max(math.ceil(round(self._capacity * (1 - self._eviction_fraction), 9)), 1)

    def evict_if_over_capacity(self, now: datetime | None = None) -> list[str]:
        with self._lock:
            if len(self._entries) <= self._capacity:
                return []

            now = now or self._clock()
            ranked = sorted(
                self._entries.items(),
                key=lambda item: item[1].rank(now, self._access_weight, self._age_weight),
            )
            remove_count = len(ranked) - self.retained_size()
            removed = [key for key, _ in ranked[:remove_count]]
            for key in removed:
                del self._entries[key]
            kept = len(self._entries)

        logger.info("Cache cleanup: removed %d least-used entries, kept %d", len(removed), kept)
        return removed
