"""Summary: Application configuration for ReplyDesk.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, storage, and tiers.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    ai_provider: str
    openai_api_key: str | None
    openai_model: str
    ollama_url: str
    ollama_model: str
    mailbox_provider: str
    mock_mailbox_path: str
    gmail_api_base_url: str
    google_client_id: str
    google_client_secret: str
    google_token_url: str
    oauth_redirect_uri: str
    token_secret: str
    api_host: str
    api_port: int
    log_level: str
    free_message_limit: int
    free_draft_limit: int
    billing_provider: str
    stripe_secret_key: str | None
    stripe_price_id: str
    app_url: str

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("REPLYDESK_DB_PATH", defaults["db_path"]),
            ai_provider=os.getenv("REPLYDESK_AI_PROVIDER", defaults["ai_provider"]),
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            ollama_url=os.getenv("OLLAMA_URL", defaults["ollama_url"]),
            ollama_model=os.getenv("OLLAMA_MODEL", defaults["ollama_model"]),
            mailbox_provider=os.getenv("REPLYDESK_MAILBOX_PROVIDER", defaults["mailbox_provider"]),
            mock_mailbox_path=os.getenv(
                "REPLYDESK_MOCK_MAILBOX_PATH", defaults["mock_mailbox_path"]
            ),
            gmail_api_base_url=os.getenv("GMAIL_API_BASE_URL", defaults["gmail_api_base_url"]),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID", defaults["google_client_id"]),
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", defaults["google_client_secret"]),
            google_token_url=os.getenv("GOOGLE_TOKEN_URL", defaults["google_token_url"]),
            oauth_redirect_uri=os.getenv(
                "REPLYDESK_OAUTH_REDIRECT_URI", defaults["oauth_redirect_uri"]
            ),
            token_secret=os.getenv("REPLYDESK_TOKEN_SECRET", defaults["token_secret"]),
            api_host=os.getenv("REPLYDESK_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("REPLYDESK_API_PORT", defaults["api_port"])),
            log_level=os.getenv("REPLYDESK_LOG_LEVEL", defaults["log_level"]),
            free_message_limit=int(
                os.getenv("REPLYDESK_FREE_MESSAGE_LIMIT", defaults["free_message_limit"])
            ),
            free_draft_limit=int(
                os.getenv("REPLYDESK_FREE_DRAFT_LIMIT", defaults["free_draft_limit"])
            ),
            billing_provider=os.getenv("REPLYDESK_BILLING_PROVIDER", defaults["billing_provider"]),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or defaults["stripe_secret_key"] or None,
            stripe_price_id=os.getenv("STRIPE_PRICE_ID", defaults["stripe_price_id"]),
            app_url=os.getenv("REPLYDESK_APP_URL", defaults["app_url"]),
        )


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip('"'))
