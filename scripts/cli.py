"""Minimal CLI entry point for manual testing of the Inbox Buddy pipeline."""

from __future__ import annotations

import argparse
import logging
import sys
import time

from inbox_buddy.config.settings import InboxBuddySettings
from inbox_buddy.core.auth import authenticate, load_token_pair
from inbox_buddy.core.models import Email, InstantResult, TokenPair
from inbox_buddy.pipeline.service import EmailIntelligenceService


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def print_emails(emails: tuple[Email, ...], limit: int) -> None:
    """Print a compact priority table."""
    for email in emails[:limit]:
        unread = "*" if email.is_unread else " "
        print(
            f"{unread} {email.priority_score:>3}  {email.hours_since_received:>6.1f}h  "
            f"{email.sender_display_name[:24]:24s}  {email.subject[:60]}"
        )


def _add_size_args(subparser: argparse.ArgumentParser) -> None:
    """Add --account and --limit flags to a subparser."""
    subparser.add_argument(
        "--account",
        "-a",
        default=None,
        help="Account email used in the cache key (default: Gmail profile address)",
    )
    subparser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of emails to print",
    )


def _validate_size_args(args: argparse.Namespace) -> None:
    """Reject non-positive limits."""
    if getattr(args, "limit", 1) <= 0:
        print("Error: --limit must be positive", file=sys.stderr)
        sys.exit(1)
    if getattr(args, "timeout", 1) <= 0:
        print("Error: --timeout must be positive", file=sys.stderr)
        sys.exit(1)


def _resolve_account(
    service: EmailIntelligenceService, tokens: TokenPair, account: str | None
) -> str:
    if account:
        return account
    return service.build_fetch_stage(tokens).client.get_profile_email()


def _wait_for_enrichment(
    service: EmailIntelligenceService, result: InstantResult, timeout: float
) -> None:
    """Poll background progress until the job finishes or ``timeout`` passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        snapshot = service.snapshot(result.cache_key)
        if snapshot is None:
            return
        print(
            f"[stage {snapshot.current_stage}/{snapshot.total_stages}] "
            f"processed={snapshot.total_processed}",
            end="\r",
            flush=True,
        )
        if not snapshot.is_refreshing:
            print()
            return
        time.sleep(1.0)
    print("\nTimed out waiting for background enrichment")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Inbox Buddy - Score and summarize your Gmail inbox"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # login command
    subparsers.add_parser("login", help="Authorize Gmail access and cache the token")

    # instant command
    instant_parser = subparsers.add_parser("instant", help="Fetch and score the instant set")
    _add_size_args(instant_parser)

    # enrich command
    enrich_parser = subparsers.add_parser(
        "enrich", help="Fetch the instant set and wait for background enrichment"
    )
    _add_size_args(enrich_parser)
    enrich_parser.add_argument(
        "--timeout",
        type=float,
        default=300.0,
        help="Seconds to wait for background enrichment",
    )

    # context command
    context_parser = subparsers.add_parser("context", help="Print the assistant context string")
    _add_size_args(context_parser)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command in ("instant", "enrich", "context"):
        _validate_size_args(args)

    settings = InboxBuddySettings()
    setup_logging(settings.log_level)

    if args.command == "login":
        try:
            settings.ensure_directories()
            authenticate(settings.credentials_path, settings.token_path)
        except Exception as e:
            print(f"\nError: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"\nToken cached at {settings.token_path}")
        return

    service = EmailIntelligenceService(settings)

    try:
        tokens = load_token_pair(settings.token_path)
        account = _resolve_account(service, tokens, args.account)
        result = service.get_instant_emails(
            tokens, account, background=args.command == "enrich"
        )
        if result.needs_auth:
            print(f"\nAuthentication required: {result.auth_error}", file=sys.stderr)
            sys.exit(2)

        if args.command == "instant":
            print(f"\n{len(result.emails)} emails ({result.status.value}):\n")
            print_emails(result.emails, args.limit)

        elif args.command == "enrich":
            _wait_for_enrichment(service, result, args.timeout)
            snapshot = service.snapshot(result.cache_key)
            emails = snapshot.best_available if snapshot else result.emails
            print(f"\n{len(emails)} emails after enrichment:\n")
            print_emails(emails, args.limit)

        elif args.command == "context":
            print(service.build_context(result))

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        service.close()


if __name__ == "__main__":
    main()
