"""Google OAuth credential handling for the Gmail API.

The token exchange itself is Google's; this module only builds credentials from
tokens the caller already holds, refreshes them when needed, and (for the CLI)
runs the installed-app flow.
"""

from __future__ import annotations

import logging
from datetime import UTC
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from inbox_buddy.core.exceptions import AuthError
from inbox_buddy.core.models import TokenPair

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


class CredentialProvider:
    """Turns caller-held tokens into refreshed Google credentials."""

    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        token_uri: str = DEFAULT_TOKEN_URI,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_uri = token_uri

    def build_credentials(self, tokens: TokenPair) -> Credentials:
        """Build google-auth credentials for a token pair."""
        expiry = tokens.expiry
        if expiry is not None and expiry.tzinfo is not None:
            # google-auth compares expiry against naive UTC
            expiry = expiry.astimezone(UTC).replace(tzinfo=None)
        return Credentials(
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_uri=self._token_uri,
            client_id=self._client_id or None,
            client_secret=self._client_secret or None,
            scopes=SCOPES,
            expiry=expiry,
        )

    def refresh_if_needed(self, tokens: TokenPair, *, force: bool = False) -> TokenPair | None:
        """Refresh the access token if it has expired.

        Args:
            tokens: Tokens currently held by the caller.
            force: Refresh even if the token still looks valid (e.g. after a 401).

        Returns:
            New tokens if a refresh happened, None if the current ones are fine.

        Raises:
            AuthError: If the token is unusable and cannot be refreshed.
        """
        creds = self.build_credentials(tokens)
        if creds.valid and not force:
            return None

        if not tokens.refresh_token:
            raise AuthError("Access token expired and no refresh token is available")

        try:
            creds.refresh(Request())
        except RefreshError as e:
            raise AuthError(f"Token refresh failed: {e}") from e

        logger.info("Access token refreshed")
        return TokenPair(
            access_token=creds.token,
            refresh_token=creds.refresh_token or tokens.refresh_token,
            expiry=creds.expiry,
        )


def load_token_pair(token_path: Path) -> TokenPair:
    """Load tokens from an authorized-user token file.

    Raises:
        AuthError: If the file is missing or unreadable.
    """
    if not token_path.exists():
        raise AuthError(f"Token file not found: {token_path}. Run the 'login' command first.")
    try:
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except (ValueError, OSError) as e:
        raise AuthError(f"Failed to load token file {token_path}: {e}") from e
    return TokenPair(
        access_token=creds.token or "",
        refresh_token=creds.refresh_token,
        expiry=creds.expiry,
    )


def authenticate(credentials_path: Path, token_path: Path) -> Credentials:
    """Run the installed-app OAuth flow and cache the resulting token.

    Args:
        credentials_path: Path to OAuth 2.0 client credentials JSON.
        token_path: Path to store the OAuth token.

    Raises:
        AuthError: If authentication fails.
    """
    if not credentials_path.exists():
        raise AuthError(
            f"Credentials file not found: {credentials_path}. "
            "Download it from Google Cloud Console."
        )

    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
        creds = flow.run_local_server(port=0)
    except Exception as e:
        raise AuthError(f"OAuth flow failed: {e}") from e

    _save_token(creds, token_path)
    logger.info("Authentication successful, token cached at %s", token_path)
    return creds


def build_gmail_service(creds: Credentials) -> Resource:
    """Build a Gmail API service resource.

    Each caller gets its own resource; they are not safe to share across threads.
    """
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def _save_token(creds: Credentials, token_path: Path) -> None:
    """Save credentials to the token cache file."""
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
