"""Gmail API client for listing inbox threads and batch fetching thread/message detail."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import Any

from google.auth.exceptions import RefreshError
from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError
from googleapiclient.http import BatchHttpRequest

from inbox_buddy.core.exceptions import AuthError, RateLimitError, RemoteTransientError
from inbox_buddy.core.models import ThreadStub

logger = logging.getLogger(__name__)

MAX_LIST_PAGE_SIZE = 500
METADATA_HEADERS = ["Subject", "From", "Date"]


def _status_code(exc: Exception) -> int | None:
    if isinstance(exc, HttpError):
        return exc.status_code
    return None


def _is_rate_limit_error(exc: Exception) -> bool:
    """Check whether an exception represents a Gmail API rate limit (429 or 403 quota)."""
    if _status_code(exc) == 429:
        return True
    error_str = str(exc)
    return "429" in error_str or "ratelimitexceeded" in error_str.lower()


def _is_auth_error(exc: Exception) -> bool:
    """Check whether an exception means the credentials are no longer usable."""
    if isinstance(exc, RefreshError):
        return True
    status = _status_code(exc)
    if status == 401:
        return True
    return status == 403 and not _is_rate_limit_error(exc)


class GmailClient:
    """Thin wrapper around the Gmail API for thread listing and batch fetch."""

    def __init__(
        self,
        service: Resource,
        user_id: str = "me",
        *,
        max_retries: int = 5,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 60.0,
        inter_page_delay_seconds: float = 0.2,
        num_retries: int = 3,
    ) -> None:
        self._service = service
        self._user_id = user_id
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._inter_page_delay = inter_page_delay_seconds
        self._num_retries = num_retries

    def _sleep_backoff(self, backoff: float, attempt: int, context: str) -> float:
        """Sleep a jittered backoff and return the next backoff value."""
        sleep_time = min(backoff, self._max_backoff)
        jitter = random.uniform(0, sleep_time)
        logger.warning(
            "Rate limited during %s (attempt %d/%d), sleeping %.2fs",
            context, attempt + 1, self._max_retries, jitter,
        )
        time.sleep(jitter)
        return min(backoff * 2, self._max_backoff)

    def _execute_with_retry(self, request: Any, context: str) -> Any:
        """Execute a single API request with exponential backoff on rate limits.

        Args:
            request: A googleapiclient HttpRequest object.
            context: Description for log messages (e.g. "list threads").

        Returns:
            The API response dict.

        Raises:
            AuthError: On 401/403 responses or a failed token refresh.
            RateLimitError: When retries are exhausted on rate-limit errors.
            RemoteTransientError: On any other API error.
        """
        backoff = self._initial_backoff

        for attempt in range(self._max_retries + 1):
            try:
                return request.execute(num_retries=self._num_retries)
            except Exception as e:
                if _is_auth_error(e):
                    raise AuthError(f"Authentication failed during {context}: {e}") from e
                if not _is_rate_limit_error(e):
                    raise RemoteTransientError(f"Failed to {context}: {e}") from e
                if attempt >= self._max_retries:
                    raise RateLimitError(
                        f"Rate limited during {context} after "
                        f"{self._max_retries} retries: {e}"
                    ) from e
                backoff = self._sleep_backoff(backoff, attempt, context)

        # Should not be reached, but just in case
        raise RateLimitError(f"Rate limited during {context} after {self._max_retries} retries")

    def get_profile_email(self) -> str:
        """Return the email address of the authenticated account."""
        request = self._service.users().getProfile(userId=self._user_id)
        profile = self._execute_with_retry(request, "get profile")
        return profile.get("emailAddress", "")

    def list_thread_ids(self, max_results: int, query: str | None = None) -> list[ThreadStub]:
        """List thread references, most recent first, up to ``max_results``.

        The Gmail API pages at most 500 threads per call; further pages are
        requested until ``max_results`` is reached or the listing is exhausted.
        """
        stubs: list[ThreadStub] = []
        page_token: str | None = None
        seen: set[str] = set()

        while len(stubs) < max_results:
            if page_token and self._inter_page_delay > 0:
                time.sleep(self._inter_page_delay)

            kwargs: dict[str, Any] = {
                "userId": self._user_id,
                "maxResults": min(max_results - len(stubs), MAX_LIST_PAGE_SIZE),
            }
            if page_token:
                kwargs["pageToken"] = page_token
            if query:
                kwargs["q"] = query

            request = self._service.users().threads().list(**kwargs)
            response = self._execute_with_retry(request, "list threads")

            threads = response.get("threads", [])
            for t in threads:
                # Pages can overlap when new mail arrives mid-listing
                if t.get("id") and t["id"] not in seen:
                    seen.add(t["id"])
                    stubs.append(ThreadStub(thread_id=t["id"], snippet=t.get("snippet", "")))
            logger.debug("Listed %d thread IDs (page)", len(threads))

            page_token = response.get("nextPageToken")
            if not threads or not page_token:
                break

        return stubs[:max_results]

    def get_message(self, message_id: str) -> dict[str, Any]:
        """Fetch a single message with its full body."""
        request = (
            self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full")
        )
        return self._execute_with_retry(request, f"get message {message_id}")

    def fetch_threads_batch(self, thread_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Fetch thread metadata (Subject/From/Date headers, labels) in one batch request.

        Returns:
            Mapping of thread id to raw thread dict. Threads that failed are absent.
        """
        return self._execute_batch(
            thread_ids,
            lambda thread_id: self._service.users()
            .threads()
            .get(
                userId=self._user_id,
                id=thread_id,
                format="metadata",
                metadataHeaders=METADATA_HEADERS,
            ),
            "thread fetch",
        )

    def fetch_messages_batch(self, message_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Fetch full message bodies in one batch request.

        Returns:
            Mapping of message id to raw message dict. Messages that failed are absent.
        """
        return self._execute_batch(
            message_ids,
            lambda message_id: self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full"),
            "message fetch",
        )

    def _execute_batch(
        self,
        ids: list[str],
        build_request: Callable[[str], Any],
        context: str,
    ) -> dict[str, dict[str, Any]]:
        """Run one logical batch, retrying only the rate-limited members.

        Per-item failures other than auth and rate limits are logged and the item is
        left out of the result.

        Raises:
            AuthError: If any member failed with an authentication error.
            RateLimitError: When retries are exhausted on rate-limited members.
            RemoteTransientError: If the batch HTTP request itself failed.
        """
        results: dict[str, dict[str, Any]] = {}
        pending = list(dict.fromkeys(ids))
        if not pending:
            return results
        backoff = self._initial_backoff

        for attempt in range(self._max_retries + 1):
            rate_limited: list[str] = []
            auth_failures: list[str] = []
            errors = 0

            def _callback(
                request_id: str,
                response: dict[str, Any] | None,
                exception: Exception | None,
            ) -> None:
                nonlocal errors
                if exception:
                    if _is_auth_error(exception):
                        auth_failures.append(f"{request_id}: {exception}")
                    elif _is_rate_limit_error(exception):
                        rate_limited.append(request_id)
                    else:
                        errors += 1
                        logger.warning("Batch %s error for %s: %s", context, request_id, exception)
                elif response:
                    results[request_id] = response

            batch: BatchHttpRequest = self._service.new_batch_http_request(callback=_callback)
            for item_id in pending:
                batch.add(build_request(item_id), request_id=item_id)

            try:
                batch.execute()
            except Exception as e:
                if _is_auth_error(e):
                    raise AuthError(f"Authentication failed during batch {context}: {e}") from e
                if not _is_rate_limit_error(e):
                    raise RemoteTransientError(f"Batch {context} failed: {e}") from e
                rate_limited = [item_id for item_id in pending if item_id not in results]

            if auth_failures:
                raise AuthError(
                    f"Authentication failed during batch {context}: {auth_failures[0]}"
                )

            if errors:
                logger.warning(
                    "Batch %s had %d errors out of %d requests", context, errors, len(pending)
                )

            if not rate_limited:
                logger.debug("Batch %s returned %d items", context, len(results))
                return results

            if attempt >= self._max_retries:
                raise RateLimitError(
                    f"Rate limited during batch {context} after {self._max_retries} retries"
                )
            backoff = self._sleep_backoff(backoff, attempt, f"batch {context}")
            pending = rate_limited

        raise RateLimitError(
            f"Rate limited during batch {context} after {self._max_retries} retries"
        )
