"""Inbox Buddy - Gmail ingestion, priority scoring and caching for an email assistant."""

from inbox_buddy.core.models import (
    CacheSnapshot,
    CacheStatus,
    Email,
    InstantResult,
    ScoringFactors,
    ThreadStub,
    ThreadSummary,
    TokenPair,
)
from inbox_buddy.pipeline.service import EmailIntelligenceService

__all__ = [
    "CacheSnapshot",
    "CacheStatus",
    "Email",
    "EmailIntelligenceService",
    "InstantResult",
    "ScoringFactors",
    "ThreadStub",
    "ThreadSummary",
    "TokenPair",
]
