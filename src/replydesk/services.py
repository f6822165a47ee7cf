"""Summary: Core application services for ReplyDesk.

Importance: Orchestrates credentials, ingestion, drafting, sending, and subscriptions against storage.
Alternatives: Build a full service layer with a dependency injection framework.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import logging
import secrets
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable

from replydesk.billing import (
    PREMIUM_STATUSES,
    STATUS_CANCELED,
    STATUS_INCOMPLETE,
    BillingProvider,
    subscription_fields,
)
from replydesk.classifier import AlwaysReplyClassifier, ReplyClassifier
from replydesk.config import AppConfig
from replydesk.drafting import (
    MAX_HISTORY,
    ReplyGenerator,
    ReplyRequest,
    plain_to_html,
    reply_subject,
)
from replydesk.errors import (
    AlreadySent,
    AlreadySubscribed,
    CredentialMissing,
    LimitExceeded,
    NotFound,
)
from replydesk.locks import KeyedLock
from replydesk.mailbox import MailboxClient, build_reply_message
from replydesk.models import AuthContext, Credential, Draft, HistoricalPair, User
from replydesk.normalizer import normalize
from replydesk.oauth import OAuthError, exchange_oauth_code
from replydesk.storage.sqlite_store import (
    SqliteStore,
    StoredApiKey,
    StoredDraft,
    StoredMessage,
    StoredSubscription,
    StoredUser,
)
from replydesk.token_codec import TokenCodec, TokenDecodeError
from replydesk.usage import DRAFTS, MESSAGES, UsageMeter


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UserService:
    """Summary: Manages user records.

    Importance: Every other entity hangs off a user id.
    Alternatives: Use an external identity provider.
    """

    store: SqliteStore

    def create_user(self, display_name: str, email: str) -> int:
        return self.store.ensure_user(User(display_name=display_name, email=email))

    def get_user(self, user_id: int) -> StoredUser:
        user = self.store.get_user(user_id)
        if not user:
            raise NotFound("User", user_id)
        return user

    def get_user_by_email(self, email: str) -> StoredUser | None:
        return self.store.get_user_by_email(email)


@dataclass(frozen=True)
class ApiKeyService:
    """Summary: Issues and verifies API keys for users.

    Importance: API keys are how HTTP callers become an AuthContext.
    Alternatives: Use OAuth or an external auth service.
    """

    store: SqliteStore
    token_secret: str

    def create_api_key(self, user_id: int, label: str | None = None) -> tuple[int, str]:
        """Summary: Create a new API key for a user.

        Importance: Returns a one-time plaintext token for client storage.
        Alternatives: Store raw tokens in the database.
        """

        raw_token = secrets.token_urlsafe(32)
        key_id = self.store.create_api_key(
            user_id=user_id,
            token_hash=self._hash_token(raw_token),
            label=label,
            created_at=utc_now().isoformat(),
        )
        logger.info("Created API key %s for user %s.", key_id, user_id)
        return key_id, raw_token

    def revoke_api_key(self, user_id: int, key_id: int) -> bool:
        return self.store.delete_api_key(user_id, key_id)

    def list_api_keys(self, user_id: int) -> list[StoredApiKey]:
        return self.store.list_api_keys(user_id)

    def resolve_user_id(self, token: str) -> int | None:
        return self.store.get_user_id_by_api_key(self._hash_token(token))

    def _hash_token(self, token: str) -> str:
        salt = self.token_secret or "replydesk"
        return hashlib.sha256(f"{salt}:{token}".encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CredentialService:
    """Summary: Token store for mailbox credentials with guarded refresh.

    Importance: No mailbox call ever runs with an expired access token.
    Alternatives: Let the provider SDK refresh tokens implicitly.
    """

    store: SqliteStore
    codec: TokenCodec
    mailbox: MailboxClient
    config: AppConfig
    refresh_locks: KeyedLock = field(default_factory=KeyedLock)
    now: Callable[[], datetime] = utc_now

    def store_credential(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
    ) -> Credential:
        """Summary: Persist a credential with encoded tokens.

        Importance: Used on initial connection and after every refresh.
        Alternatives: Keep tokens only in memory.
        """

        self.store.upsert_credential(
            user_id=user_id,
            access_token=self.codec.encode(access_token),
            refresh_token=self.codec.encode_optional(refresh_token),
            expires_at=expires_at.isoformat() if expires_at else None,
            updated_at=self.now().isoformat(),
        )
        logger.info("Stored mailbox credential for user %s.", user_id)
        return Credential(user_id, access_token, refresh_token, expires_at)

    def load(self, user_id: int) -> Credential | None:
        record = self.store.get_credential(user_id)
        if not record:
            return None
        try:
            access_token = self.codec.decode(record.access_token)
            refresh_token = self.codec.decode_optional(record.refresh_token)
        except TokenDecodeError as exc:
            # The user has to reconnect Gmail.
            logger.warning("Stored credential for user %s is unreadable: %s", user_id, exc)
            return None
        return Credential(
            user_id=record.user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_parse_expiry(record.expires_at),
        )

    def require(self, user_id: int) -> Credential:
        credential = self.load(user_id)
        if not credential:
            raise CredentialMissing()
        return credential

    def connect(self, user_id: int, code: str) -> Credential:
        """Summary: Exchange an OAuth code and store the resulting credential.

        Importance: Creates the credential that every mailbox call depends on.
        Alternatives: Accept tokens pasted in by the user.
        """

        try:
            result = exchange_oauth_code(self.config, code)
        except OAuthError as exc:
            raise CredentialMissing(f"Gmail connection failed: {exc}") from exc
        if not result.refresh_token:
            raise CredentialMissing("Gmail connection failed: no refresh token was issued")
        return self.store_credential(user_id, result.access_token, result.refresh_token, result.expires_at)

    def ensure_fresh(self, auth: AuthContext) -> AuthContext:
        """Summary: Return an AuthContext whose credential is usable now.

        Importance: Refreshes at most once per call; a failed refresh raises
        CredentialExpired before any mailbox request is made.
        Alternatives: Retry refresh until it succeeds.

        Refresh is single-flight per user. A caller that waited on another
        request's refresh re-reads the store and reuses the new token instead of
        spending the refresh token a second time.
        """

        credential = auth.credential or self.require(auth.user_id)
        if not credential.is_expired(self.now()):
            return AuthContext(auth.user_id, credential)
        with self.refresh_locks.hold(auth.user_id):
            current = self.load(auth.user_id) or credential
            if not current.is_expired(self.now()):
                return AuthContext(auth.user_id, current)
            logger.info("Refreshing expired mailbox credential for user %s.", auth.user_id)
            refreshed = self.mailbox.refresh(current)
            stored = self.store_credential(
                auth.user_id,
                refreshed.access_token,
                refreshed.refresh_token or current.refresh_token,
                refreshed.expires_at,
            )
        return AuthContext(auth.user_id, stored)


@dataclass(frozen=True)
class SubscriptionService:
    """Summary: Tracks subscription state and starts billing flows.

    Importance: Decides whether a user is premium for usage checks.
    Alternatives: Ask the payment processor on every request.
    """

    store: SqliteStore
    billing: BillingProvider
    app_url: str
    now: Callable[[], datetime] = utc_now

    def get(self, user_id: int) -> StoredSubscription | None:
        return self.store.get_subscription(user_id)

    def is_premium(self, user_id: int) -> bool:
        subscription = self.store.get_subscription(user_id)
        return bool(subscription and subscription.status in PREMIUM_STATUSES)

    def start_checkout(self, auth: AuthContext, email: str, name: str | None = None) -> str:
        """Summary: Start a premium checkout and return the processor URL.

        Importance: Reuses an existing customer and records an incomplete subscription.
        Alternatives: Create a new customer on every attempt.
        """

        subscription = self.store.get_subscription(auth.user_id)
        if subscription and subscription.status in PREMIUM_STATUSES:
            raise AlreadySubscribed()
        if subscription and subscription.customer_ref:
            customer_ref = subscription.customer_ref
        else:
            customer_ref = self.billing.create_customer(email, name)
            self.store.upsert_subscription_customer(
                auth.user_id, customer_ref, STATUS_INCOMPLETE, self.now()
            )
        base_url = self.app_url.rstrip("/")
        url = self.billing.create_checkout_session(
            customer_ref,
            success_url=f"{base_url}/billing?success=true",
            cancel_url=f"{base_url}/billing?canceled=true",
        )
        logger.info("Started checkout for user %s.", auth.user_id)
        return url

    def open_portal(self, auth: AuthContext) -> str:
        subscription = self.store.get_subscription(auth.user_id)
        if not subscription or not subscription.customer_ref:
            raise NotFound("Subscription")
        return self.billing.create_portal_session(
            subscription.customer_ref, return_url=f"{self.app_url.rstrip('/')}/billing"
        )

    def apply_event(self, event: dict[str, Any]) -> bool:
        """Summary: Apply a verified payment processor event to stored subscriptions.

        Importance: Subscription status only changes through these deltas.
        Alternatives: Poll the processor for subscription state.

        Returns False for event types that do not affect subscriptions.
        """

        event_type = event.get("type")
        data = (event.get("data") or {}).get("object") or {}
        if event_type == "checkout.session.completed":
            subscription_ref = data.get("subscription")
            customer_ref = data.get("customer")
            if not subscription_ref or not customer_ref:
                return False
            fields = subscription_fields(self.billing.retrieve_subscription(subscription_ref))
            updated = self.store.update_subscription("customer_ref", customer_ref, fields, self.now())
        elif event_type == "customer.subscription.updated":
            fields = subscription_fields(data)
            fields.pop("subscription_ref")
            updated = self.store.update_subscription("subscription_ref", data["id"], fields, self.now())
        elif event_type == "customer.subscription.deleted":
            fields = {
                "status": data.get("status", STATUS_CANCELED),
                "cancel_at_period_end": False,
            }
            updated = self.store.update_subscription("subscription_ref", data["id"], fields, self.now())
        else:
            return False
        if not updated:
            logger.warning("Billing event %s matched no stored subscription.", event_type)
        else:
            logger.info("Applied billing event %s.", event_type)
        return True


@dataclass(frozen=True)
class FetchResult:
    """Summary: Outcome of a mailbox fetch."""

    ingested: int
    messages: list[StoredMessage]


@dataclass(frozen=True)
class IngestionService:
    """Summary: Fetches, normalizes, and stores mailbox messages.

    Importance: Entry point of the reply pipeline.
    Alternatives: Sync the mailbox in a background job.
    """

    store: SqliteStore
    mailbox: MailboxClient
    credentials: CredentialService
    usage: UsageMeter
    subscriptions: SubscriptionService
    classifier: ReplyClassifier = field(default_factory=AlwaysReplyClassifier)

    def fetch_messages(self, auth: AuthContext, max_results: int = 10, list_limit: int = 100) -> FetchResult:
        """Summary: Pull candidate messages from the mailbox into storage.

        Importance: Applies the usage ceiling, token freshness, and dedup rules in order.
        Alternatives: Fetch every message and filter later.
        """

        premium = self.subscriptions.is_premium(auth.user_id)
        remaining = self.usage.remaining(auth.user_id, MESSAGES, premium)
        if remaining == 0:
            raise LimitExceeded("Daily message limit reached, upgrade to Premium for unlimited processing")
        if remaining is not None:
            max_results = min(max_results, remaining)
        auth = self.credentials.ensure_fresh(auth)
        provider_ids = self.mailbox.list_candidate_messages(auth.credential, max_results=max_results)
        known = self.store.known_provider_ids(auth.user_id, provider_ids)
        messages = [
            normalize(self.mailbox.get_message(auth.credential, provider_id), self.classifier)
            for provider_id in provider_ids
            if provider_id not in known
        ]
        ids = self.store.save_messages(messages, user_id=auth.user_id, created_at=self.usage.clock())
        logger.info("Ingested %s new messages for user %s.", len(ids), auth.user_id)
        return FetchResult(ingested=len(ids), messages=self.store.list_messages(auth.user_id, list_limit))

    def list_messages(self, auth: AuthContext, limit: int = 50) -> list[StoredMessage]:
        return self.store.list_messages(auth.user_id, limit)

    def get_message(self, auth: AuthContext, message_id: int) -> StoredMessage:
        message = self.store.get_message(auth.user_id, message_id)
        if not message:
            raise NotFound("Email", message_id)
        return message

    def mark_read(self, auth: AuthContext, message_id: int) -> None:
        if not self.store.mark_message_read(auth.user_id, message_id):
            raise NotFound("Email", message_id)


@dataclass(frozen=True)
class DraftService:
    """Summary: Generates, edits, and sends reply drafts.

    Importance: Owns the one-way Unsent to Sent transition.
    Alternatives: Hand drafts to the provider's own drafts folder.
    """

    store: SqliteStore
    generator: ReplyGenerator
    mailbox: MailboxClient
    credentials: CredentialService
    usage: UsageMeter
    subscriptions: SubscriptionService
    send_locks: KeyedLock = field(default_factory=KeyedLock)

    def generate_draft(self, auth: AuthContext, message_id: int) -> StoredDraft:
        """Summary: Draft a reply to a stored message.

        Importance: Nothing is persisted unless generation succeeds.
        Alternatives: Persist a placeholder draft before calling the backend.
        """

        premium = self.subscriptions.is_premium(auth.user_id)
        if not self.usage.check_limit(auth.user_id, DRAFTS, premium):
            raise LimitExceeded("Daily draft limit reached, upgrade to Premium for unlimited drafts")
        message = self.store.get_message(auth.user_id, message_id)
        if not message:
            raise NotFound("Email", message_id)
        request = ReplyRequest(
            sender=message.sender_name or message.sender_address or "Sender",
            subject=message.subject,
            body=message.plain_body,
        )
        text = self.generator.generate(request, self.history(auth, message_id))
        draft = Draft(
            message_id=message.id,
            subject=reply_subject(message.subject),
            plain_body=text,
            html_body=plain_to_html(text),
        )
        draft_id = self.store.create_draft(auth.user_id, draft, created_at=self.usage.clock())
        logger.info("Drafted reply %s for message %s.", draft_id, message_id)
        return self.store.get_draft(auth.user_id, draft_id)

    def history(self, auth: AuthContext, message_id: int) -> list[HistoricalPair]:
        """Summary: Collect up to three recent message and reply pairs.

        Importance: A storage failure here degrades to no history instead of failing the draft.
        Alternatives: Abort generation when history cannot be read.
        """

        try:
            rows = self.store.list_reply_history(auth.user_id, message_id, MAX_HISTORY)
        except sqlite3.Error as exc:
            logger.warning("Could not load reply history for user %s: %s", auth.user_id, exc)
            return []
        return [HistoricalPair(row.subject, row.plain_body, row.reply_body) for row in rows]

    def get_draft(self, auth: AuthContext, draft_id: int) -> StoredDraft:
        draft = self.store.get_draft(auth.user_id, draft_id)
        if not draft:
            raise NotFound("Draft", draft_id)
        return draft

    def list_drafts(
        self, auth: AuthContext, limit: int = 50, message_id: int | None = None
    ) -> list[StoredDraft]:
        return self.store.list_drafts(auth.user_id, limit, message_id=message_id)

    def edit_draft(
        self,
        auth: AuthContext,
        draft_id: int,
        subject: str,
        plain_body: str,
        html_body: str | None = None,
    ) -> StoredDraft:
        """Summary: Replace the subject and body of an unsent draft.

        Importance: Sent drafts are frozen.
        Alternatives: Allow edits and keep a revision log.
        """

        if not subject or not plain_body:
            raise ValueError("Subject and body are required")
        if "\r" in subject or "\n" in subject:
            raise ValueError("Subject must be a single line")
        draft = self.get_draft(auth, draft_id)
        if draft.is_sent:
            raise AlreadySent()
        updated = self.store.update_draft_content(
            auth.user_id,
            draft_id,
            subject,
            plain_body,
            html_body or plain_to_html(plain_body),
            updated_at=self.usage.clock(),
        )
        if not updated:
            raise AlreadySent()
        logger.info("Edited draft %s.", draft_id)
        return self.get_draft(auth, draft_id)

    def send_draft(self, auth: AuthContext, draft_id: int) -> str:
        """Summary: Send a draft through the mailbox and mark it sent.

        Importance: The provider call must succeed before the draft becomes sent,
        and a sent draft never reaches the provider again.
        Alternatives: Mark sent first and roll back on failure.
        """

        with self.send_locks.hold(draft_id):
            draft = self.get_draft(auth, draft_id)
            if draft.is_sent:
                raise AlreadySent()
            message = self.store.get_message(auth.user_id, draft.message_id)
            if not message:
                raise NotFound("Email", draft.message_id)
            auth = self.credentials.ensure_fresh(auth)
            raw = build_reply_message(
                message.sender_address, message.sender_name, draft.subject, draft.plain_body
            )
            provider_message_id = self.mailbox.send_message(auth.credential, raw, message.thread_id)
            try:
                marked = self.store.mark_draft_sent(
                    auth.user_id, draft_id, provider_message_id, sent_at=self.usage.clock()
                )
            except sqlite3.Error:
                logger.error(
                    "Draft %s was sent as provider message %s but could not be marked sent.",
                    draft_id,
                    provider_message_id,
                )
                raise
        if not marked:
            logger.error(
                "Draft %s was sent as provider message %s but was already marked sent.",
                draft_id,
                provider_message_id,
            )
        logger.info("Sent draft %s as %s.", draft_id, provider_message_id)
        return provider_message_id


def _parse_expiry(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring unreadable credential expiry %r.", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
