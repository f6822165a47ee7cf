"""Summary: Mailbox client interfaces and implementations.

Importance: Wraps the provider's list, get, send, and token refresh operations behind one contract.
Alternatives: Call the Gmail SDK directly from services with vendor lock-in.
"""

from __future__ import annotations

import base64
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from email.policy import SMTP
from email.utils import formataddr
from pathlib import Path
from typing import Any
import urllib.error
import urllib.parse
import urllib.request

from replydesk.config import AppConfig
from replydesk.errors import CredentialExpired, MailboxError, SendFailed
from replydesk.models import Credential
from replydesk.oauth import OAuthError, refresh_oauth_token


logger = logging.getLogger(__name__)

CANDIDATE_QUERY = (
    "-category:promotions -category:social -category:updates -category:forums -category:spam"
)


class MailboxClient(ABC):
    """Summary: Abstract request/response contract for a mailbox provider.

    Importance: Lets ingestion and send flows run against Gmail or a fixture.
    Alternatives: Use provider-specific classes directly in services.
    """

    @abstractmethod
    def list_candidate_messages(self, credential: Credential, max_results: int = 10) -> list[str]:
        """Summary: List provider ids of messages outside the excluded categories.

        Importance: Selects which messages ingestion fetches in full.
        Alternatives: List all messages and filter locally.
        """

    @abstractmethod
    def get_message(self, credential: Credential, message_id: str) -> dict[str, Any]:
        """Summary: Fetch a full raw message payload by provider id.

        Importance: Supplies headers, labels, and MIME parts for normalization.
        Alternatives: Fetch metadata only and lazy-load bodies.
        """

    @abstractmethod
    def send_message(self, credential: Credential, raw_rfc822: bytes, thread_id: str | None) -> str:
        """Summary: Send an RFC822 message and return its provider id.

        Importance: Delivers an approved draft into the original thread.
        Alternatives: Create a provider draft and let the user send it.
        """

    @abstractmethod
    def refresh(self, credential: Credential) -> Credential:
        """Summary: Exchange the refresh token for a new credential.

        Importance: Keeps access working past the access token lifetime.
        Alternatives: Require re-authorization on expiry.
        """


class GmailMailboxClient(MailboxClient):
    """Summary: Mailbox client for the Gmail REST API.

    Importance: Provides OAuth-based read and send access.
    Alternatives: Use IMAP/SMTP with app passwords.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._base_url = config.gmail_api_base_url.rstrip("/")

    def list_candidate_messages(self, credential: Credential, max_results: int = 10) -> list[str]:
        query = urllib.parse.urlencode({"maxResults": max_results, "q": CANDIDATE_QUERY})
        url = f"{self._base_url}/users/me/messages?{query}"
        try:
            payload = _gmail_request(url, credential.access_token)
        except urllib.error.URLError as exc:
            raise MailboxError(f"Gmail list failed: {_describe(exc)}") from exc
        except ValueError as exc:
            raise MailboxError(f"Gmail list returned an unreadable response: {exc}") from exc
        return [item["id"] for item in payload.get("messages", []) if item.get("id")]

    def get_message(self, credential: Credential, message_id: str) -> dict[str, Any]:
        url = f"{self._base_url}/users/me/messages/{urllib.parse.quote(message_id)}?format=full"
        try:
            return _gmail_request(url, credential.access_token)
        except urllib.error.URLError as exc:
            raise MailboxError(f"Gmail get failed for {message_id}: {_describe(exc)}") from exc
        except ValueError as exc:
            raise MailboxError(f"Gmail get returned an unreadable response for {message_id}: {exc}") from exc

    def send_message(self, credential: Credential, raw_rfc822: bytes, thread_id: str | None) -> str:
        body: dict[str, Any] = {"raw": encode_raw_message(raw_rfc822)}
        if thread_id:
            body["threadId"] = thread_id
        url = f"{self._base_url}/users/me/messages/send"
        try:
            payload = _gmail_request(url, credential.access_token, body=body)
        except urllib.error.URLError as exc:
            raise SendFailed(f"Gmail send failed: {_describe(exc)}") from exc
        except ValueError as exc:
            raise SendFailed(f"Gmail send returned an unreadable response: {exc}") from exc
        provider_id = payload.get("id")
        if not provider_id:
            raise SendFailed("Gmail send did not return a message id")
        return provider_id

    def refresh(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise CredentialExpired("Refresh token not available, please reconnect Gmail")
        try:
            result = refresh_oauth_token(self._config, credential.refresh_token)
        except OAuthError as exc:
            logger.warning("Token refresh failed for user %s: %s", credential.user_id, exc)
            raise CredentialExpired() from exc
        return Credential(
            user_id=credential.user_id,
            access_token=result.access_token,
            refresh_token=result.refresh_token or credential.refresh_token,
            expires_at=result.expires_at,
        )


class MockMailboxClient(MailboxClient):
    """Summary: Serves Gmail-shaped message payloads from a local JSON fixture.

    Importance: Supports offline demos and tests for the whole pipeline.
    Alternatives: Record and replay live Gmail traffic.
    """

    def __init__(self, fixture_path: Path | None = None, messages: list[dict[str, Any]] | None = None) -> None:
        if messages is None:
            messages = json.loads(fixture_path.read_text(encoding="utf-8")) if fixture_path else []
        self._messages = {item["id"]: item for item in messages}
        self.sent: list[dict[str, Any]] = []

    def list_candidate_messages(self, credential: Credential, max_results: int = 10) -> list[str]:
        return list(self._messages)[:max_results]

    def get_message(self, credential: Credential, message_id: str) -> dict[str, Any]:
        if message_id not in self._messages:
            raise MailboxError(f"Message {message_id} not found in mock mailbox")
        return self._messages[message_id]

    def send_message(self, credential: Credential, raw_rfc822: bytes, thread_id: str | None) -> str:
        provider_id = f"mock-sent-{len(self.sent) + 1}"
        self.sent.append({"id": provider_id, "raw": raw_rfc822, "thread_id": thread_id})
        return provider_id

    def refresh(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise CredentialExpired("Refresh token not available, please reconnect Gmail")
        return Credential(
            user_id=credential.user_id,
            access_token=f"mock-access-{datetime.now(timezone.utc).timestamp():.0f}",
            refresh_token=credential.refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )


def build_reply_message(to_address: str, to_name: str, subject: str, body: str) -> bytes:
    """Summary: Compose a plain-text RFC822 reply.

    Importance: Produces the payload the provider send operation expects.
    Alternatives: Concatenate header lines by hand.
    """

    message = EmailMessage()
    try:
        message["To"] = formataddr((to_name, to_address)) if to_name else to_address
        message["Subject"] = subject
        message.set_content(body, charset="utf-8")
        return message.as_bytes(policy=SMTP)
    except ValueError as exc:
        raise SendFailed(f"Reply could not be composed: {exc}") from exc


def encode_raw_message(raw_rfc822: bytes) -> str:
    """Summary: Encode an RFC822 message as unpadded base64url.

    Importance: Gmail's send endpoint requires this encoding for the raw field.
    Alternatives: Use the multipart upload endpoint.
    """

    return base64.urlsafe_b64encode(raw_rfc822).decode("ascii").rstrip("=")


def _gmail_request(url: str, access_token: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
    """Summary: Call the Gmail API and parse the JSON response.

    Importance: Encapsulates Gmail API calls without new dependencies.
    Alternatives: Use a third-party HTTP client or SDK.
    """

    headers = {"Authorization": f"Bearer {access_token}"}
    data = None
    method = "GET"
    if body is not None:
        data = json.dumps(body).encode("utf-8")
        headers["Content-Type"] = "application/json"
        method = "POST"
    request = urllib.request.Request(url, data=data, headers=headers, method=method)
    with urllib.request.urlopen(request, timeout=10) as response:
        raw = response.read().decode("utf-8")
    return json.loads(raw) if raw else {}


def _describe(exc: urllib.error.URLError) -> str:
    if isinstance(exc, urllib.error.HTTPError):
        error_body = exc.read().decode("utf-8", errors="ignore")
        return f"{exc.code} {error_body or exc.reason}"
    return str(exc.reason)
