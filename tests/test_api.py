"""Summary: API integration tests.

Importance: Validates FastAPI endpoints against core workflows.
Alternatives: Use manual curl testing only.
"""

from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from replydesk.ai import MockAiProvider
from replydesk.api import create_app
from replydesk.app import AppContext, build_context
from replydesk.billing import MockBillingProvider
from replydesk.config import AppConfig
from replydesk.mailbox import MockMailboxClient


FIXTURE = Path(__file__).resolve().parents[1] / "data" / "mock_mailbox.json"


def _build_config(db_path: str) -> AppConfig:
    """Summary: Build an AppConfig for API tests.

    Importance: Ensures tests use isolated storage and offline providers.
    Alternatives: Load AppConfig from environment variables.
    """

    return AppConfig(
        db_path=db_path,
        ai_provider="mock",
        openai_api_key=None,
        openai_model="gpt-4o",
        ollama_url="http://localhost:11434",
        ollama_model="llama3",
        mailbox_provider="mock",
        mock_mailbox_path=str(FIXTURE),
        gmail_api_base_url="https://gmail.googleapis.com/gmail/v1",
        google_client_id="",
        google_client_secret="",
        google_token_url="https://oauth2.googleapis.com/token",
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


def _client(tmp_path: Path) -> tuple[TestClient, AppContext, MockMailboxClient]:
    config = _build_config(str(tmp_path / "test.db"))
    mailbox = MockMailboxClient(FIXTURE)
    context = build_context(
        config,
        mailbox=mailbox,
        ai_provider=MockAiProvider(),
        billing=MockBillingProvider(config.app_url),
    )
    return TestClient(create_app(config, context)), context, mailbox


def _api_key(context: AppContext, email: str = "me@example.com") -> dict[str, str]:
    user_id = context.users.create_user("Me", email)
    _, token = context.api_keys.create_api_key(user_id, "tests")
    return {"X-API-Key": token}


def test_health_is_public(tmp_path: Path) -> None:
    client, _, _ = _client(tmp_path)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_requests_without_valid_key_are_rejected(tmp_path: Path) -> None:
    """Summary: Verify data endpoints require a resolvable API key.

    Importance: Every operation runs under an explicit AuthContext.
    Alternatives: Fall back to a default local user.
    """

    client, _, _ = _client(tmp_path)
    missing = client.get("/emails")
    assert missing.status_code == 401
    assert missing.json() == {"error": "Authentication required", "code": "AUTH_REQUIRED"}
    invalid = client.get("/emails", headers={"X-API-Key": "nope"})
    assert invalid.status_code == 401
    assert invalid.json()["code"] == "AUTH_REQUIRED"


def test_fetch_without_gmail_connection(tmp_path: Path) -> None:
    client, context, _ = _client(tmp_path)
    response = client.post("/emails/fetch", json={}, headers=_api_key(context))
    assert response.status_code == 400
    assert response.json()["code"] == "CREDENTIAL_MISSING"


def test_api_reply_workflow(tmp_path: Path) -> None:
    """Summary: Verify connect, fetch, draft, edit, and send over HTTP.

    Importance: Confirms the HTTP layer wires into the full reply pipeline.
    Alternatives: Validate only the service layer.
    """

    client, context, mailbox = _client(tmp_path)
    headers = _api_key(context)
    stored = client.post(
        "/credentials",
        json={"access_token": "access", "refresh_token": "refresh", "expires_in": 3600},
        headers=headers,
    )
    assert stored.status_code == 200
    assert stored.json()["stored"] is True

    fetched = client.post("/emails/fetch", json={"max_results": 10}, headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["ingested"] == 3
    emails = client.get("/emails", headers=headers).json()
    assert len(emails) == 3
    target = next(email for email in emails if email["subject"] == "Review meeting")
    assert target["is_read"] is False
    read = client.post(f"/emails/{target['id']}/read", headers=headers)
    assert read.json() == {"id": target["id"], "is_read": True}
    assert client.post("/emails/999/read", headers=headers).status_code == 404

    generated = client.post("/drafts/generate", json={"email_id": target["id"]}, headers=headers)
    assert generated.status_code == 200
    draft = generated.json()
    assert draft["subject"] == "Re: Review meeting"
    assert draft["plain_body"].startswith("Thanks for your email.")

    edited = client.put(
        f"/drafts/{draft['id']}",
        json={"subject": "Re: Review meeting", "content": "Friday at 10 works."},
        headers=headers,
    )
    assert edited.status_code == 200
    assert edited.json()["html_body"] == "<p>Friday at 10 works.</p>"

    sent = client.post(f"/drafts/{draft['id']}/send", headers=headers)
    assert sent.status_code == 200
    assert sent.json() == {"success": True, "message_id": "mock-sent-1"}
    again = client.post(f"/drafts/{draft['id']}/send", headers=headers)
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_SENT"
    assert len(mailbox.sent) == 1

    drafts = client.get("/drafts", params={"email_id": target["id"]}, headers=headers).json()
    assert drafts[0]["is_sent"] is True

    usage = client.get("/usage", headers=headers).json()
    assert usage["tier"] == "free"
    assert usage["messages_today"] == 3
    assert usage["drafts_today"] == 1


def test_edit_validation_and_ownership(tmp_path: Path) -> None:
    client, context, _ = _client(tmp_path)
    headers = _api_key(context)
    other = _api_key(context, "other@example.com")
    client.post("/credentials", json={"access_token": "access"}, headers=headers)
    emails = client.post("/emails/fetch", json={}, headers=headers).json()["emails"]
    draft = client.post("/drafts/generate", json={"email_id": emails[0]["id"]}, headers=headers).json()

    empty = client.put(f"/drafts/{draft['id']}", json={"subject": "", "content": "x"}, headers=headers)
    assert empty.status_code == 422
    multiline = client.put(
        f"/drafts/{draft['id']}",
        json={"subject": "Re: hi\nBcc: x@evil.test", "content": "x"},
        headers=headers,
    )
    assert multiline.status_code == 400
    foreign = client.post(f"/drafts/{draft['id']}/send", headers=other)
    assert foreign.status_code == 404
    assert foreign.json()["code"] == "NOT_FOUND"
    missing_email = client.post("/drafts/generate", json={"email_id": 999}, headers=headers)
    assert missing_email.status_code == 404


def test_billing_endpoints(tmp_path: Path) -> None:
    client, context, _ = _client(tmp_path)
    headers = _api_key(context)
    portal = client.post("/billing/portal", headers=headers)
    assert portal.status_code == 404
    checkout = client.post("/billing/checkout", json={}, headers=headers)
    assert checkout.status_code == 200
    assert checkout.json()["url"] == "http://localhost:8000/mock-checkout?customer=cus_mock_1"
    portal = client.post("/billing/portal", headers=headers)
    assert portal.json()["url"] == "http://localhost:8000/mock-portal?customer=cus_mock_1"
