"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path

from replydesk.ai import AiProvider, AiProviderFactory
from replydesk.billing import BillingProvider, build_billing_provider
from replydesk.classifier import AlwaysReplyClassifier
from replydesk.config import AppConfig
from replydesk.drafting import ReplyGenerator
from replydesk.mailbox import GmailMailboxClient, MailboxClient, MockMailboxClient
from replydesk.services import (
    ApiKeyService,
    CredentialService,
    DraftService,
    IngestionService,
    SubscriptionService,
    UserService,
)
from replydesk.storage.sqlite_store import SqliteStore
from replydesk.token_codec import TokenCodec
from replydesk.usage import UsageLimits, UsageMeter


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared services for every caller.

    Importance: Services are stateless apart from storage, so one set serves all users;
    callers pass an AuthContext into each operation.
    Alternatives: Rebuild dependencies for every request.
    """

    config: AppConfig
    store: SqliteStore
    users: UserService
    api_keys: ApiKeyService
    credentials: CredentialService
    subscriptions: SubscriptionService
    usage: UsageMeter
    ingestion: IngestionService
    drafts: DraftService


def configure_logging(level: str) -> None:
    """Summary: Configure root logging once per process."""

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, level.upper(), logging.INFO),
            format="%(levelname)s %(name)s: %(message)s",
        )


def build_mailbox(config: AppConfig) -> MailboxClient:
    if config.mailbox_provider == "mock":
        return MockMailboxClient(Path(config.mock_mailbox_path))
    return GmailMailboxClient(config)


def build_context(
    config: AppConfig,
    mailbox: MailboxClient | None = None,
    ai_provider: AiProvider | None = None,
    billing: BillingProvider | None = None,
) -> AppContext:
    """Summary: Build the shared application context from configuration.

    Importance: Provides a single construction path; tests inject fake providers here.
    Alternatives: Use a dependency injection container.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    mailbox = mailbox or build_mailbox(config)
    ai_provider = ai_provider or AiProviderFactory(config).build()
    billing = billing or build_billing_provider(config)
    usage = UsageMeter(
        store=store,
        limits=UsageLimits(messages=config.free_message_limit, drafts=config.free_draft_limit),
    )
    credentials = CredentialService(
        store=store,
        codec=TokenCodec(config.token_secret),
        mailbox=mailbox,
        config=config,
    )
    subscriptions = SubscriptionService(store=store, billing=billing, app_url=config.app_url)
    return AppContext(
        config=config,
        store=store,
        users=UserService(store=store),
        api_keys=ApiKeyService(store=store, token_secret=config.token_secret),
        credentials=credentials,
        subscriptions=subscriptions,
        usage=usage,
        ingestion=IngestionService(
            store=store,
            mailbox=mailbox,
            credentials=credentials,
            usage=usage,
            subscriptions=subscriptions,
            classifier=AlwaysReplyClassifier(),
        ),
        drafts=DraftService(
            store=store,
            generator=ReplyGenerator(ai_provider),
            mailbox=mailbox,
            credentials=credentials,
            usage=usage,
            subscriptions=subscriptions,
        ),
    )
