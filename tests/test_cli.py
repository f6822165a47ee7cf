"""Summary: Tests for the command-line interface.

Importance: Ensures CLI commands drive the same services as the API.
Alternatives: Exercise the CLI manually.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from replydesk.cli import build_parser, main, run_cli


FIXTURE = Path(__file__).resolve().parents[1] / "data" / "mock_mailbox.json"
DEFAULTS = Path(__file__).resolve().parents[1] / "config" / "defaults.json"


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    (tmp_path / "config").mkdir()
    defaults = json.loads(DEFAULTS.read_text(encoding="utf-8"))
    defaults.update(
        {
            "db_path": str(tmp_path / "cli.db"),
            "mailbox_provider": "mock",
            "mock_mailbox_path": str(FIXTURE),
            "ai_provider": "mock",
            "billing_provider": "mock",
        }
    )
    (tmp_path / "config" / "defaults.json").write_text(json.dumps(defaults), encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    for key in ["REPLYDESK_DB_PATH", "REPLYDESK_MAILBOX_PROVIDER", "REPLYDESK_AI_PROVIDER", "REPLYDESK_BILLING_PROVIDER"]:
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def test_parser_requires_email_for_user_commands() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["fetch"])
    args = build_parser().parse_args(["send-draft", "3", "--email", "me@example.com"])
    assert args.draft_id == 3


def test_cli_user_and_usage(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify users and API keys can be created and usage shown.

    Importance: The CLI is how the first API key is issued.
    Alternatives: Seed users directly in the database.
    """

    run_cli(["create-user", "Me", "me@example.com"])
    run_cli(["create-api-key", "--email", "me@example.com", "--label", "laptop"])
    run_cli(["usage", "--email", "me@example.com"])
    output = capsys.readouterr().out
    assert "User 1 (me@example.com)." in output
    assert "API key 1: " in output
    assert "tier: free" in output
    assert "draft_limit: 10" in output


def test_cli_fetch_requires_connection(workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    run_cli(["create-user", "Me", "me@example.com"])
    monkeypatch.setattr(sys, "argv", ["replydesk", "fetch", "--email", "me@example.com"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 1
    assert "CREDENTIAL_MISSING" in capsys.readouterr().err


def test_cli_unknown_user(workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(sys, "argv", ["replydesk", "list-drafts", "--email", "ghost@example.com"])
    with pytest.raises(SystemExit):
        main()
    assert "User ghost@example.com not found" in capsys.readouterr().err
