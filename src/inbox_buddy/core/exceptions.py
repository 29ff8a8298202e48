"""Custom exceptions for Inbox Buddy."""


class InboxBuddyError(Exception):
    """Base exception for all Inbox Buddy errors."""


class AuthError(InboxBuddyError):
    """Credentials are invalid or expired and could not be refreshed."""


class RemoteTransientError(InboxBuddyError):
    """A single Gmail API call failed; safe to skip the item and continue."""


class RateLimitError(RemoteTransientError):
    """Gmail API rate limit exceeded after all retries."""


class ParseError(InboxBuddyError):
    """A Gmail thread resource could not be turned into an Email."""
