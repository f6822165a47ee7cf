"""Summary: Google OAuth helpers for mailbox credentials.

Importance: Builds authorization URLs and performs code exchange and token refresh without extra dependencies.
Alternatives: Use google-auth-oauthlib for OAuth flows.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
import urllib.error
import urllib.parse
import urllib.request

from replydesk.config import AppConfig


GMAIL_SCOPES = " ".join(
    [
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/gmail.labels",
        "https://www.googleapis.com/auth/gmail.modify",
    ]
)


class OAuthError(RuntimeError):
    """Summary: Raised when the token endpoint rejects a request."""


@dataclass(frozen=True)
class OAuthTokenResult:
    """Summary: Normalized OAuth token response data.

    Importance: Provides a consistent token representation for credential storage and refresh.
    Alternatives: Store the raw provider response without normalization.
    """

    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    token_type: str | None
    raw: dict[str, Any]

    @staticmethod
    def from_response(payload: dict[str, Any], now: datetime | None = None) -> "OAuthTokenResult":
        """Summary: Build an OAuthTokenResult from a token endpoint payload.

        Importance: Converts relative expires_in into an absolute expiry.
        Alternatives: Keep expires_in and the fetch time separately.
        """

        if "access_token" not in payload:
            raise OAuthError("Token response did not include an access token")
        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)):
            issued = now or datetime.now(timezone.utc)
            expires_at = issued + timedelta(seconds=int(expires_in))
        return OAuthTokenResult(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            token_type=payload.get("token_type"),
            raw=payload,
        )


def create_state_token() -> str:
    """Summary: Generate a CSRF state token.

    Importance: Protects OAuth flows from CSRF attacks.
    Alternatives: Use server-side session storage with pre-generated tokens.
    """

    return secrets.token_urlsafe(24)


def build_google_auth_url(config: AppConfig, state: str) -> str:
    """Summary: Build a Google OAuth authorization URL for Gmail.

    Importance: Requests offline access so a refresh token is issued.
    Alternatives: Use a different OAuth helper library.
    """

    params = {
        "client_id": config.google_client_id,
        "redirect_uri": config.oauth_redirect_uri,
        "response_type": "code",
        "access_type": "offline",
        "prompt": "consent",
        "scope": GMAIL_SCOPES,
        "state": state,
    }
    return "https://accounts.google.com/o/oauth2/v2/auth?" + urllib.parse.urlencode(params)


def exchange_oauth_code(config: AppConfig, code: str) -> OAuthTokenResult:
    """Summary: Exchange an OAuth authorization code for tokens.

    Importance: Creates the initial mailbox credential.
    Alternatives: Use provider SDKs or external auth services.
    """

    response = _post_form(config.google_token_url, _token_payload(config, code))
    return OAuthTokenResult.from_response(response)


def refresh_oauth_token(config: AppConfig, refresh_token: str) -> OAuthTokenResult:
    """Summary: Exchange a refresh token for a new access token.

    Importance: Keeps mailbox access working after the access token expires.
    Alternatives: Force the user through the consent screen again.
    """

    response = _post_form(config.google_token_url, _refresh_payload(config, refresh_token))
    return OAuthTokenResult.from_response(response)


def _token_payload(config: AppConfig, code: str) -> dict[str, str]:
    _ensure_oauth_config(config)
    return {
        "client_id": config.google_client_id,
        "client_secret": config.google_client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": config.oauth_redirect_uri,
    }


def _refresh_payload(config: AppConfig, refresh_token: str) -> dict[str, str]:
    _ensure_oauth_config(config)
    return {
        "client_id": config.google_client_id,
        "client_secret": config.google_client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }


def _ensure_oauth_config(config: AppConfig) -> None:
    """Summary: Validate that OAuth client credentials exist.

    Importance: Prevents confusing token endpoint errors when credentials are missing.
    Alternatives: Allow requests to fail at the provider endpoint.
    """

    if not config.google_client_id or not config.google_client_secret:
        raise OAuthError("Missing Google OAuth client credentials")


def _post_form(url: str, payload: dict[str, str]) -> dict[str, Any]:
    """Summary: Send a form-encoded POST request and parse JSON.

    Importance: Avoids new dependencies while supporting OAuth exchanges.
    Alternatives: Use requests or a provider SDK.
    """

    data = urllib.parse.urlencode(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=10) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8")
        raise OAuthError(f"Token request failed: {error_body or exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise OAuthError(f"Token request failed: {exc.reason}") from exc
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise OAuthError(f"Token response was not valid JSON: {exc}") from exc
