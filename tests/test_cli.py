"""Tests for CLI argument handling and output helpers."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable
from unittest.mock import MagicMock, patch

import pytest

import scripts.cli as cli_module
from inbox_buddy.core.models import Email, TokenPair


def _parse_args(argv: list[str]) -> argparse.Namespace:
    """Build subparsers the way main() does and parse ``argv``."""
    parser = argparse.ArgumentParser()
    subparsers = parser.add_subparsers(dest="command")

    cli_module._add_size_args(subparsers.add_parser("instant"))
    enrich_parser = subparsers.add_parser("enrich")
    cli_module._add_size_args(enrich_parser)
    enrich_parser.add_argument("--timeout", type=float, default=300.0)

    return parser.parse_args(argv)


class TestSizeArgs:
    """Test --account and --limit on the fetching subcommands."""

    def test_defaults(self) -> None:
        args = _parse_args(["instant"])
        assert args.account is None
        assert args.limit == 20

    def test_all_flags(self) -> None:
        args = _parse_args(["enrich", "-a", "me@example.com", "--limit", "5", "--timeout", "30"])
        assert args.account == "me@example.com"
        assert args.limit == 5
        assert args.timeout == 30.0


class TestValidation:
    """Test that _validate_size_args rejects non-positive values."""

    def test_zero_limit_exits(self) -> None:
        args = argparse.Namespace(command="instant", account=None, limit=0)
        with pytest.raises(SystemExit):
            cli_module._validate_size_args(args)

    def test_negative_timeout_exits(self) -> None:
        args = argparse.Namespace(command="enrich", account=None, limit=5, timeout=-1.0)
        with pytest.raises(SystemExit):
            cli_module._validate_size_args(args)

    def test_valid_args_pass(self) -> None:
        args = argparse.Namespace(command="enrich", account=None, limit=5, timeout=10.0)
        # Should not raise
        cli_module._validate_size_args(args)


class TestHelpers:
    """Account resolution and table output."""

    def test_explicit_account_wins(self) -> None:
        service = MagicMock()
        tokens = TokenPair(access_token="a")

        assert cli_module._resolve_account(service, tokens, "me@example.com") == "me@example.com"
        service.build_fetch_stage.assert_not_called()

    def test_account_from_profile(self) -> None:
        service = MagicMock()
        service.build_fetch_stage.return_value.client.get_profile_email.return_value = "p@x.org"

        assert cli_module._resolve_account(service, TokenPair(access_token="a"), None) == "p@x.org"

    def test_print_emails_respects_limit(
        self, make_email: Callable[..., Email], capsys: pytest.CaptureFixture[str]
    ) -> None:
        emails = (make_email("a", 120, is_unread=True), make_email("b", 40))

        cli_module.print_emails(emails, 1)

        out = capsys.readouterr().out
        assert "* 120" in out
        assert "Subject a" in out
        assert "Subject b" not in out


class TestMain:
    """Entry point behavior without network access."""

    def test_no_command_exits(self) -> None:
        with patch.object(sys, "argv", ["cli.py"]):
            with pytest.raises(SystemExit) as exc_info:
                cli_module.main()
        assert exc_info.value.code == 1

    def test_bad_limit_exits_before_work(self) -> None:
        with patch.object(sys, "argv", ["cli.py", "instant", "--limit", "0"]):
            with patch.object(cli_module, "EmailIntelligenceService") as service_cls:
                with pytest.raises(SystemExit):
                    cli_module.main()
        service_cls.assert_not_called()


class TestBackgroundWork:
    """Only the enrich command starts background enrichment."""

    def _run(self, argv: list[str]) -> MagicMock:
        service = MagicMock()
        service.get_instant_emails.return_value.needs_auth = False
        service.get_instant_emails.return_value.emails = ()
        service.snapshot.return_value = None
        with patch.object(sys, "argv", ["cli.py", *argv, "--account", "me@example.com"]):
            with patch.object(cli_module, "EmailIntelligenceService", return_value=service):
                with patch.object(
                    cli_module, "load_token_pair", return_value=TokenPair(access_token="a")
                ):
                    cli_module.main()
        return service

    @pytest.mark.parametrize("command", ["instant", "context"])
    def test_short_commands_skip_background(self, command: str) -> None:
        service = self._run([command])

        assert service.get_instant_emails.call_args.kwargs["background"] is False
        service.close.assert_called_once()

    def test_enrich_starts_background(self) -> None:
        service = self._run(["enrich", "--timeout", "1"])

        assert service.get_instant_emails.call_args.kwargs["background"] is True
