"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class InboxBuddySettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="INBOX_BUDDY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OAuth client (token refresh only)
    client_id: str = ""
    client_secret: str = ""
    token_uri: str = "https://oauth2.googleapis.com/token"
    credentials_path: Path = Path("credentials/client_secret.json")
    token_path: Path = Path("credentials/token.json")

    # Gmail API settings
    user_id: str = "me"
    inbox_query: str = "in:inbox -in:spam -in:trash"

    # Cache policy
    cache_ttl_seconds: float = 15 * 60
    freshness_threshold_seconds: float = 3 * 60
    max_cache_entries: int = 100
    eviction_fraction: float = 0.3
    eviction_access_weight: float = 0.7
    eviction_age_weight: float = 0.3

    # Instant path
    instant_size: int = 30
    instant_batch_size: int = 6
    instant_batch_delay_seconds: float = 0.025
    max_detailed_content: int = 20

    # Background enrichment
    background_target_size: int = 500
    progressive_stages: int = 5
    background_batch_size: int = 8
    background_batch_delay_seconds: float = 0.05
    deep_extraction_threshold: int = 60
    background_workers: int = 4

    # Content and context
    content_char_budget: int = 1200
    context_top_n: int = 15
    context_content_chars: int = 350

    # Rate limiting & retry
    max_retries: int = 5
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 60.0
    inter_page_delay_seconds: float = 0.2
    num_retries: int = 3

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create the credentials directory if it doesn't exist."""
        self.credentials_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
