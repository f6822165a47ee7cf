"""Summary: Tests for mailbox clients and reply message composition.

Importance: Ensures Gmail requests and raw send payloads are shaped correctly.
Alternatives: Exercise the live Gmail API in integration tests only.
"""

from __future__ import annotations

import base64
import urllib.error
from datetime import datetime, timezone
from email import message_from_bytes
from email.policy import default
from pathlib import Path
from typing import Any

import pytest

from replydesk.config import AppConfig
from replydesk.errors import CredentialExpired, MailboxError, SendFailed
from replydesk.mailbox import (
    CANDIDATE_QUERY,
    GmailMailboxClient,
    MockMailboxClient,
    build_reply_message,
    encode_raw_message,
)
from replydesk.models import Credential
from replydesk.oauth import OAuthError, OAuthTokenResult


FIXTURE = Path(__file__).resolve().parents[1] / "data" / "mock_mailbox.json"


def _config() -> AppConfig:
    return AppConfig(
        db_path="test.db",
        ai_provider="mock",
        openai_api_key=None,
        openai_model="gpt-4o",
        ollama_url="http://localhost:11434",
        ollama_model="llama3",
        mailbox_provider="gmail",
        mock_mailbox_path="data/mock_mailbox.json",
        gmail_api_base_url="https://gmail.example/gmail/v1/",
        google_client_id="google-client",
        google_client_secret="google-secret",
        google_token_url="https://oauth2.example/token",
        oauth_redirect_uri="http://localhost:8000/oauth/callback",
        token_secret="secret",
        api_host="127.0.0.1",
        api_port=8000,
        log_level="INFO",
        free_message_limit=50,
        free_draft_limit=10,
        billing_provider="mock",
        stripe_secret_key=None,
        stripe_price_id="",
        app_url="http://localhost:8000",
    )


def _credential(refresh_token: str | None = "refresh") -> Credential:
    return Credential(user_id=1, access_token="access", refresh_token=refresh_token, expires_at=None)


def test_build_reply_message_is_plain_utf8() -> None:
    """Summary: Verify the composed reply parses back to the intended fields.

    Importance: The provider delivers exactly these headers and body.
    Alternatives: Trust header concatenation without parsing.
    """

    raw = build_reply_message("maya@example.com", "Maya Chen", "Re: Review", "Friday works.\nThanks")
    parsed = message_from_bytes(raw, policy=default)
    assert parsed["To"] == "Maya Chen <maya@example.com>"
    assert parsed["Subject"] == "Re: Review"
    assert parsed.get_content_type() == "text/plain"
    assert parsed.get_content_charset() == "utf-8"
    assert parsed.get_content().replace("\r\n", "\n").strip() == "Friday works.\nThanks"


def test_build_reply_message_without_name() -> None:
    parsed = message_from_bytes(build_reply_message("sam@example.org", "", "Re: Hi", "Yes"), policy=default)
    assert parsed["To"] == "sam@example.org"


def test_build_reply_message_rejects_header_injection() -> None:
    with pytest.raises(SendFailed):
        build_reply_message("sam@example.org", "", "Re: hello\nBcc: x@evil.test", "Yes")


def test_encode_raw_message_is_unpadded_base64url() -> None:
    raw = b"Subject: hi\r\n\r\n\xff\xfe?"
    encoded = encode_raw_message(raw)
    assert "=" not in encoded
    assert "+" not in encoded and "/" not in encoded
    assert base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)) == raw


def test_gmail_list_uses_category_query(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[str, str, Any]] = []

    def _fake_request(url: str, token: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        calls.append((url, token, body))
        return {"messages": [{"id": "a", "threadId": "t"}, {"id": "b", "threadId": "t"}]}

    monkeypatch.setattr("replydesk.mailbox._gmail_request", _fake_request)
    ids = GmailMailboxClient(_config()).list_candidate_messages(_credential(), max_results=5)
    assert ids == ["a", "b"]
    url, token, body = calls[0]
    assert url.startswith("https://gmail.example/gmail/v1/users/me/messages?")
    assert "maxResults=5" in url
    assert "category%3Apromotions" in url
    assert token == "access"
    assert body is None
    assert "-category:spam" in CANDIDATE_QUERY


def test_gmail_list_wraps_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*_args: object, **_kwargs: object) -> dict[str, Any]:
        raise urllib.error.URLError("unreachable")

    monkeypatch.setattr("replydesk.mailbox._gmail_request", _fail)
    with pytest.raises(MailboxError):
        GmailMailboxClient(_config()).list_candidate_messages(_credential())


def test_gmail_wraps_unreadable_responses(monkeypatch: pytest.MonkeyPatch) -> None:
    def _not_json(*_args: object, **_kwargs: object) -> dict[str, Any]:
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    monkeypatch.setattr("replydesk.mailbox._gmail_request", _not_json)
    client = GmailMailboxClient(_config())
    with pytest.raises(MailboxError):
        client.list_candidate_messages(_credential())
    with pytest.raises(MailboxError):
        client.get_message(_credential(), "a")


def test_gmail_send_posts_raw_and_thread(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify send posts the encoded message into the original thread.

    Importance: Replies must land in the conversation being answered.
    Alternatives: Start a new thread for every reply.
    """

    captured: dict[str, Any] = {}

    def _fake_request(url: str, token: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        captured.update({"url": url, "body": body})
        return {"id": "sent-1", "threadId": "thread-9"}

    monkeypatch.setattr("replydesk.mailbox._gmail_request", _fake_request)
    raw = build_reply_message("a@example.com", "A", "Re: x", "body")
    provider_id = GmailMailboxClient(_config()).send_message(_credential(), raw, "thread-9")
    assert provider_id == "sent-1"
    assert captured["url"].endswith("/users/me/messages/send")
    assert captured["body"] == {"raw": encode_raw_message(raw), "threadId": "thread-9"}


def test_gmail_send_failure_raises_send_failed(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*_args: object, **_kwargs: object) -> dict[str, Any]:
        raise urllib.error.URLError("reset")

    monkeypatch.setattr("replydesk.mailbox._gmail_request", _fail)
    with pytest.raises(SendFailed):
        GmailMailboxClient(_config()).send_message(_credential(), b"raw", None)


def test_gmail_send_without_id_raises_send_failed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("replydesk.mailbox._gmail_request", lambda *_args, **_kwargs: {})
    with pytest.raises(SendFailed):
        GmailMailboxClient(_config()).send_message(_credential(), b"raw", None)


def test_gmail_refresh_keeps_refresh_token(monkeypatch: pytest.MonkeyPatch) -> None:
    expires_at = datetime(2030, 1, 1, tzinfo=timezone.utc)

    def _fake_refresh(config: AppConfig, refresh_token: str) -> OAuthTokenResult:
        assert refresh_token == "refresh"
        return OAuthTokenResult("new-access", None, expires_at, "Bearer", {})

    monkeypatch.setattr("replydesk.mailbox.refresh_oauth_token", _fake_refresh)
    refreshed = GmailMailboxClient(_config()).refresh(_credential())
    assert refreshed.access_token == "new-access"
    assert refreshed.refresh_token == "refresh"
    assert refreshed.expires_at == expires_at


def test_gmail_refresh_failure_raises_credential_expired(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*_args: object) -> OAuthTokenResult:
        raise OAuthError("invalid_grant")

    monkeypatch.setattr("replydesk.mailbox.refresh_oauth_token", _fail)
    with pytest.raises(CredentialExpired):
        GmailMailboxClient(_config()).refresh(_credential())
    with pytest.raises(CredentialExpired):
        GmailMailboxClient(_config()).refresh(_credential(refresh_token=None))


def test_gmail_refresh_with_non_json_token_response(monkeypatch: pytest.MonkeyPatch) -> None:
    def _not_json(*_args: object) -> dict[str, Any]:
        raise OAuthError("Token response was not valid JSON")

    monkeypatch.setattr("replydesk.oauth._post_form", _not_json)
    with pytest.raises(CredentialExpired):
        GmailMailboxClient(_config()).refresh(_credential())


def test_mock_mailbox_serves_fixture_and_records_sends() -> None:
    mailbox = MockMailboxClient(FIXTURE)
    ids = mailbox.list_candidate_messages(_credential(), max_results=2)
    assert len(ids) == 2
    assert mailbox.get_message(_credential(), ids[0])["id"] == ids[0]
    with pytest.raises(MailboxError):
        mailbox.get_message(_credential(), "missing")
    assert mailbox.send_message(_credential(), b"raw", "t1") == "mock-sent-1"
    assert mailbox.sent == [{"id": "mock-sent-1", "raw": b"raw", "thread_id": "t1"}]
