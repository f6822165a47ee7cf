"""Summary: Domain model dataclasses for ReplyDesk.

Importance: Defines the entities shared across the pipeline, services, and storage.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class User:
    """Summary: Represents an account owner.

    Importance: Every credential, message, and draft is scoped to one user.
    Alternatives: Delegate identities entirely to an external auth backend.
    """

    display_name: str
    email: str


@dataclass(frozen=True)
class Credential:
    """Summary: OAuth credential for the user's mailbox.

    Importance: Required for every mailbox call; refreshed when expired.
    Alternatives: Store the raw provider token response.
    """

    user_id: int
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None

    def is_expired(self, now: datetime) -> bool:
        """Summary: Check whether the access token can no longer be used.

        Importance: Drives the refresh-before-use rule.
        Alternatives: Refresh with a safety margin before expiry.
        """

        if self.expires_at is None:
            return False
        return now >= self.expires_at


@dataclass(frozen=True)
class AuthContext:
    """Summary: Explicit caller identity passed into every operation.

    Importance: Replaces ambient session state with a value that services can trust.
    Alternatives: Bind services to a user at construction time.
    """

    user_id: int
    credential: Credential | None = None


@dataclass(frozen=True)
class Message:
    """Summary: Normalized email message ready for storage.

    Importance: Core unit for reply selection and drafting.
    Alternatives: Store raw provider payloads and parse on read.
    """

    provider_message_id: str
    thread_id: str | None
    sender_address: str
    sender_name: str
    recipients: str
    subject: str
    plain_body: str
    html_body: str
    received_at: datetime
    is_read: bool
    requires_reply: bool
    is_malformed: bool = False


@dataclass(frozen=True)
class Draft:
    """Summary: Generated candidate reply for a message.

    Importance: Stays editable until it is sent.
    Alternatives: Send replies directly without a review step.
    """

    message_id: int
    subject: str
    plain_body: str
    html_body: str


@dataclass(frozen=True)
class HistoricalPair:
    """Summary: Past message and reply used as few-shot context.

    Importance: Keeps generated replies close to the user's own tone.
    Alternatives: Use embeddings to retrieve similar replies.
    """

    subject: str
    body: str
    reply_body: str

