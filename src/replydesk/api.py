"""Summary: FastAPI application for ReplyDesk.

Importance: Exposes the reply pipeline to the dashboard and API clients.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from replydesk.app import AppContext, build_context, configure_logging
from replydesk.config import AppConfig
from replydesk.errors import AuthRequired, ReplyDeskError
from replydesk.models import AuthContext


class FetchRequest(BaseModel):
    """Summary: Request payload for mailbox fetches.

    Importance: Bounds how many candidates one call may pull.
    Alternatives: Use query parameters instead of JSON payloads.
    """

    max_results: int = Field(default=10, ge=1, le=100)


class GenerateDraftRequest(BaseModel):
    """Summary: Request payload for drafting a reply to a stored email."""

    email_id: int


class EditDraftRequest(BaseModel):
    """Summary: Request payload for editing an unsent draft.

    Importance: Lets the user review and adjust content before sending.
    Alternatives: Regenerate instead of editing.
    """

    subject: str = Field(min_length=1)
    content: str = Field(min_length=1)
    html_content: str | None = None


class CredentialRequest(BaseModel):
    """Summary: Request payload for storing mailbox tokens obtained elsewhere."""

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: int | None = Field(default=None, ge=0)


class CheckoutRequest(BaseModel):
    """Summary: Request payload for starting a premium checkout."""

    email: str | None = None
    name: str | None = None


def create_app(config: AppConfig, context: AppContext | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to ReplyDesk services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    configure_logging(config.log_level)
    app = FastAPI(title="ReplyDesk API", version="0.1.0")
    context = context or build_context(config)
    app.state.context = context

    @app.exception_handler(ReplyDeskError)
    def handle_replydesk_error(request: Request, exc: ReplyDeskError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})

    def require_auth(x_api_key: str | None = Header(default=None)) -> AuthContext:
        """Summary: Resolve the X-API-Key header to an AuthContext.

        Importance: Every data endpoint is scoped to the key's owner.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not x_api_key:
            raise AuthRequired()
        user_id = context.api_keys.resolve_user_id(x_api_key)
        if user_id is None:
            raise AuthRequired("Invalid API key")
        return AuthContext(user_id=user_id)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint.

        Importance: Supports uptime checks in local and cloud deployments.
        Alternatives: Use a metrics endpoint only.
        """

        return {"status": "ok"}

    @app.post("/emails/fetch")
    def fetch_emails(payload: FetchRequest, auth: AuthContext = Depends(require_auth)) -> dict[str, Any]:
        """Summary: Pull new candidate emails from Gmail.

        Importance: Starts the reply pipeline on demand.
        Alternatives: Sync in the background on a schedule.
        """

        result = context.ingestion.fetch_messages(auth, max_results=payload.max_results)
        return {"ingested": result.ingested, "emails": [asdict(message) for message in result.messages]}

    @app.get("/emails")
    def list_emails(limit: int = 50, auth: AuthContext = Depends(require_auth)) -> list[dict[str, Any]]:
        return [asdict(message) for message in context.ingestion.list_messages(auth, limit)]

    @app.post("/emails/{email_id}/read")
    def mark_email_read(email_id: int, auth: AuthContext = Depends(require_auth)) -> dict[str, Any]:
        context.ingestion.mark_read(auth, email_id)
        return {"id": email_id, "is_read": True}

    @app.post("/drafts/generate")
    def generate_draft(payload: GenerateDraftRequest, auth: AuthContext = Depends(require_auth)) -> dict[str, Any]:
        """Summary: Draft a reply to a stored email.

        Importance: Core value of the product; counts against the daily draft limit.
        Alternatives: Draft automatically on fetch.
        """

        return asdict(context.drafts.generate_draft(auth, payload.email_id))

    @app.get("/drafts")
    def list_drafts(
        limit: int = 50,
        email_id: int | None = None,
        auth: AuthContext = Depends(require_auth),
    ) -> list[dict[str, Any]]:
        return [asdict(draft) for draft in context.drafts.list_drafts(auth, limit, message_id=email_id)]

    @app.put("/drafts/{draft_id}")
    def edit_draft(
        draft_id: int, payload: EditDraftRequest, auth: AuthContext = Depends(require_auth)
    ) -> dict[str, Any]:
        try:
            draft = context.drafts.edit_draft(
                auth, draft_id, payload.subject, payload.content, payload.html_content
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return asdict(draft)

    @app.post("/drafts/{draft_id}/send")
    def send_draft(draft_id: int, auth: AuthContext = Depends(require_auth)) -> dict[str, Any]:
        """Summary: Send a draft as a reply in the original thread.

        Importance: A draft can be sent once; repeats return 409.
        Alternatives: Queue sends for later delivery.
        """

        return {"success": True, "message_id": context.drafts.send_draft(auth, draft_id)}

    @app.get("/usage")
    def usage(auth: AuthContext = Depends(require_auth)) -> dict[str, Any]:
        premium = context.subscriptions.is_premium(auth.user_id)
        return context.usage.snapshot(auth.user_id, premium)

    @app.post("/credentials")
    def store_credentials(payload: CredentialRequest, auth: AuthContext = Depends(require_auth)) -> dict[str, Any]:
        """Summary: Store mailbox tokens obtained through an external OAuth flow.

        Importance: Connects Gmail without hosting the redirect endpoint.
        Alternatives: Run the OAuth exchange through the CLI.
        """

        expires_at = None
        if payload.expires_in is not None:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=payload.expires_in)
        context.credentials.store_credential(
            auth.user_id, payload.access_token, payload.refresh_token, expires_at
        )
        return {"stored": True, "expires_at": expires_at.isoformat() if expires_at else None}

    @app.post("/billing/checkout")
    def billing_checkout(payload: CheckoutRequest, auth: AuthContext = Depends(require_auth)) -> dict[str, str]:
        email = payload.email
        name = payload.name
        if not email:
            user = context.users.get_user(auth.user_id)
            email = user.email
            name = name or user.display_name
        return {"url": context.subscriptions.start_checkout(auth, email, name)}

    @app.post("/billing/portal")
    def billing_portal(auth: AuthContext = Depends(require_auth)) -> dict[str, str]:
        return {"url": context.subscriptions.open_portal(auth)}

    return app


def create_app_from_env() -> FastAPI:
    """Summary: Build the app from environment configuration for ASGI servers."""

    return create_app(AppConfig.from_env())
