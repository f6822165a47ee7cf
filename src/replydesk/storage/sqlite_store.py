"""Summary: SQLite storage implementation for ReplyDesk.

Importance: Persists users, credentials, messages, drafts, and subscriptions with per-user scoping.
Alternatives: Use an ORM or a hosted Postgres backend.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from replydesk.models import Draft, Message, User


@dataclass(frozen=True)
class StoredUser:
    """Summary: User record with database identifier."""

    id: int
    display_name: str
    email: str


@dataclass(frozen=True)
class StoredApiKey:
    """Summary: API key metadata without the secret.

    Importance: Supports listing and revoking keys.
    Alternatives: Store keys in an external auth service.
    """

    id: int
    user_id: int
    label: str | None
    created_at: str


@dataclass(frozen=True)
class StoredCredential:
    """Summary: Encoded mailbox credential row.

    Importance: Tokens stay encoded until the credential service decodes them.
    Alternatives: Store plaintext tokens.
    """

    user_id: int
    access_token: str
    refresh_token: str | None
    expires_at: str | None
    updated_at: str


@dataclass(frozen=True)
class StoredMessage:
    """Summary: Message record with database identifier.

    Importance: Drafts and history reference messages by this id.
    Alternatives: Use provider_message_id as the only identifier.
    """

    id: int
    user_id: int
    provider_message_id: str
    thread_id: str | None
    sender_address: str
    sender_name: str
    recipients: str
    subject: str
    plain_body: str
    html_body: str
    received_at: str
    is_read: bool
    requires_reply: bool
    created_at: str


@dataclass(frozen=True)
class StoredDraft:
    """Summary: Draft record with approval and send state.

    Importance: The send flow reads and transitions this record.
    Alternatives: Keep drafts only in the provider's drafts folder.
    """

    id: int
    user_id: int
    message_id: int
    subject: str
    plain_body: str
    html_body: str
    is_approved: bool
    is_sent: bool
    created_at: str
    updated_at: str
    sent_at: str | None
    provider_message_id: str | None


@dataclass(frozen=True)
class StoredSubscription:
    """Summary: Subscription record mirrored from the payment processor."""

    user_id: int
    customer_ref: str | None
    subscription_ref: str | None
    status: str
    price_ref: str | None
    period_start: str | None
    period_end: str | None
    cancel_at_period_end: bool
    updated_at: str


@dataclass(frozen=True)
class HistoryRow:
    """Summary: A past message paired with its reply body."""

    message_id: int
    subject: str
    plain_body: str
    reply_body: str


_MESSAGE_COLUMNS = (
    "id, user_id, provider_message_id, thread_id, sender_address, sender_name, recipients, "
    "subject, plain_body, html_body, received_at, is_read, requires_reply, created_at"
)
_DRAFT_COLUMNS = (
    "id, user_id, message_id, subject, plain_body, html_body, is_approved, is_sent, "
    "created_at, updated_at, sent_at, provider_message_id"
)
_SUBSCRIPTION_COLUMNS = (
    "user_id, customer_ref, subscription_ref, status, price_ref, period_start, period_end, "
    "cancel_at_period_end, updated_at"
)
_SUBSCRIPTION_FIELDS = {
    "subscription_ref",
    "status",
    "price_ref",
    "period_start",
    "period_end",
    "cancel_at_period_end",
}
_COUNTED_TABLES = {"messages", "drafts"}


class SqliteStore:
    """Summary: SQLite-backed storage for ReplyDesk.

    Importance: Enables local-first persistence with storage-level uniqueness guarantees.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: The messages table enforces UNIQUE(user_id, provider_message_id)
        so concurrent ingestion can never store a duplicate.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS api_keys (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    token_hash TEXT NOT NULL UNIQUE,
                    label TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    user_id INTEGER PRIMARY KEY,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    expires_at TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    provider_message_id TEXT NOT NULL,
                    thread_id TEXT,
                    sender_address TEXT NOT NULL,
                    sender_name TEXT NOT NULL,
                    recipients TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    plain_body TEXT NOT NULL,
                    html_body TEXT NOT NULL,
                    received_at TEXT NOT NULL,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    requires_reply INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    UNIQUE(user_id, provider_message_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS drafts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    message_id INTEGER NOT NULL,
                    subject TEXT NOT NULL,
                    plain_body TEXT NOT NULL,
                    html_body TEXT NOT NULL,
                    is_approved INTEGER NOT NULL DEFAULT 0,
                    is_sent INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    sent_at TEXT,
                    provider_message_id TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    user_id INTEGER PRIMARY KEY,
                    customer_ref TEXT UNIQUE,
                    subscription_ref TEXT,
                    status TEXT NOT NULL,
                    price_ref TEXT,
                    period_start TEXT,
                    period_end TEXT,
                    cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_user_created ON messages (user_id, created_at)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_drafts_user_created ON drafts (user_id, created_at)"
            )
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_drafts_message ON drafts (message_id)")
            connection.commit()

    def ensure_user(self, user: User) -> int:
        """Summary: Ensure a user exists and return their ID.

        Importance: Provides a stable user record for data ownership.
        Alternatives: Delegate users to an external identity provider.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO users (display_name, email) VALUES (?, ?)",
                (user.display_name, user.email),
            )
            if cursor.rowcount:
                user_id = cursor.lastrowid
            else:
                cursor.execute("SELECT id FROM users WHERE email = ?", (user.email,))
                user_id = cursor.fetchone()[0]
            connection.commit()
        return int(user_id)

    def get_user(self, user_id: int) -> StoredUser | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("SELECT id, display_name, email FROM users WHERE id = ?", (user_id,))
            row = cursor.fetchone()
        return StoredUser(*row) if row else None

    def get_user_by_email(self, email: str) -> StoredUser | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("SELECT id, display_name, email FROM users WHERE email = ?", (email,))
            row = cursor.fetchone()
        return StoredUser(*row) if row else None

    def create_api_key(self, user_id: int, token_hash: str, label: str | None, created_at: str) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT INTO api_keys (user_id, token_hash, label, created_at) VALUES (?, ?, ?, ?)",
                (user_id, token_hash, label, created_at),
            )
            key_id = cursor.lastrowid
            connection.commit()
        return int(key_id)

    def list_api_keys(self, user_id: int) -> list[StoredApiKey]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, user_id, label, created_at FROM api_keys WHERE user_id = ? ORDER BY id",
                (user_id,),
            )
            rows = cursor.fetchall()
        return [StoredApiKey(*row) for row in rows]

    def delete_api_key(self, user_id: int, key_id: int) -> bool:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("DELETE FROM api_keys WHERE id = ? AND user_id = ?", (key_id, user_id))
            deleted = cursor.rowcount > 0
            connection.commit()
        return deleted

    def get_user_id_by_api_key(self, token_hash: str) -> int | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("SELECT user_id FROM api_keys WHERE token_hash = ?", (token_hash,))
            row = cursor.fetchone()
        return int(row[0]) if row else None

    def upsert_credential(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str | None,
        expires_at: str | None,
        updated_at: str,
    ) -> None:
        """Summary: Create or replace the user's mailbox credential.

        Importance: One credential per user; refresh overwrites in place.
        Alternatives: Keep a history of issued tokens.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO credentials (user_id, access_token, refresh_token, expires_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (user_id, access_token, refresh_token, expires_at, updated_at),
            )
            connection.commit()

    def get_credential(self, user_id: int) -> StoredCredential | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT user_id, access_token, refresh_token, expires_at, updated_at
                FROM credentials
                WHERE user_id = ?
                """,
                (user_id,),
            )
            row = cursor.fetchone()
        return StoredCredential(*row) if row else None

    def known_provider_ids(self, user_id: int, provider_ids: list[str]) -> set[str]:
        """Summary: Return which provider ids are already stored for the user.

        Importance: Lets ingestion skip fetching full payloads it already has.
        Alternatives: Fetch everything and rely on the unique constraint alone.
        """

        if not provider_ids:
            return set()
        placeholders = ", ".join("?" for _ in provider_ids)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT provider_message_id FROM messages
                WHERE user_id = ? AND provider_message_id IN ({placeholders})
                """,
                (user_id, *provider_ids),
            )
            rows = cursor.fetchall()
        return {row[0] for row in rows}

    def save_messages(self, messages: list[Message], user_id: int, created_at: datetime) -> list[int]:
        """Summary: Insert messages and return ids of the rows actually created.

        Importance: Duplicates are ignored by the unique constraint, not by a prior read.
        Alternatives: Upsert and overwrite the stored copy.
        """

        ids: list[int] = []
        with self._connection() as connection:
            cursor = connection.cursor()
            for message in messages:
                cursor.execute(
                    f"""
                    INSERT OR IGNORE INTO messages ({_MESSAGE_COLUMNS.split(", ", 1)[1]})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        message.provider_message_id,
                        message.thread_id,
                        message.sender_address,
                        message.sender_name,
                        message.recipients,
                        message.subject,
                        message.plain_body,
                        message.html_body,
                        to_utc_iso(message.received_at),
                        int(message.is_read),
                        int(message.requires_reply),
                        created_at.isoformat(),
                    ),
                )
                if cursor.rowcount:
                    ids.append(int(cursor.lastrowid))
            connection.commit()
        return ids

    def list_messages(self, user_id: int, limit: int) -> list[StoredMessage]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE user_id = ?
                ORDER BY received_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            rows = cursor.fetchall()
        return [_message_from_row(row) for row in rows]

    def get_message(self, user_id: int, message_id: int) -> StoredMessage | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ? AND user_id = ?",
                (message_id, user_id),
            )
            row = cursor.fetchone()
        return _message_from_row(row) if row else None

    def mark_message_read(self, user_id: int, message_id: int) -> bool:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "UPDATE messages SET is_read = 1 WHERE id = ? AND user_id = ?",
                (message_id, user_id),
            )
            updated = cursor.rowcount > 0
            connection.commit()
        return updated

    def list_reply_history(self, user_id: int, exclude_message_id: int, limit: int) -> list[HistoryRow]:
        """Summary: Return recent reply-needing messages that already have a draft.

        Importance: Feeds the few-shot examples block of the reply prompt.
        Alternatives: Rank history by embedding similarity.

        Ordered by received_at, most recent first. The reply body prefers a
        sent draft and otherwise the earliest one.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT m.id, m.subject, m.plain_body, (
                    SELECT d.plain_body FROM drafts d
                    WHERE d.message_id = m.id AND d.user_id = m.user_id
                    ORDER BY d.is_sent DESC, d.id ASC
                    LIMIT 1
                )
                FROM messages m
                WHERE m.user_id = ?
                    AND m.requires_reply = 1
                    AND m.id != ?
                    AND EXISTS (
                        SELECT 1 FROM drafts d WHERE d.message_id = m.id AND d.user_id = m.user_id
                    )
                ORDER BY m.received_at DESC, m.id DESC
                LIMIT ?
                """,
                (user_id, exclude_message_id, limit),
            )
            rows = cursor.fetchall()
        return [HistoryRow(*row) for row in rows]

    def create_draft(self, user_id: int, draft: Draft, created_at: datetime) -> int:
        timestamp = created_at.isoformat()
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO drafts (
                    user_id, message_id, subject, plain_body, html_body, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    draft.message_id,
                    draft.subject,
                    draft.plain_body,
                    draft.html_body,
                    timestamp,
                    timestamp,
                ),
            )
            draft_id = cursor.lastrowid
            connection.commit()
        return int(draft_id)

    def get_draft(self, user_id: int, draft_id: int) -> StoredDraft | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_DRAFT_COLUMNS} FROM drafts WHERE id = ? AND user_id = ?",
                (draft_id, user_id),
            )
            row = cursor.fetchone()
        return _draft_from_row(row) if row else None

    def list_drafts(self, user_id: int, limit: int, message_id: int | None = None) -> list[StoredDraft]:
        with self._connection() as connection:
            cursor = connection.cursor()
            if message_id is None:
                cursor.execute(
                    f"""
                    SELECT {_DRAFT_COLUMNS} FROM drafts
                    WHERE user_id = ?
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                    """,
                    (user_id, limit),
                )
            else:
                cursor.execute(
                    f"""
                    SELECT {_DRAFT_COLUMNS} FROM drafts
                    WHERE user_id = ? AND message_id = ?
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                    """,
                    (user_id, message_id, limit),
                )
            rows = cursor.fetchall()
        return [_draft_from_row(row) for row in rows]

    def update_draft_content(
        self,
        user_id: int,
        draft_id: int,
        subject: str,
        plain_body: str,
        html_body: str,
        updated_at: datetime,
    ) -> bool:
        """Summary: Replace subject and bodies of an unsent draft.

        Importance: Returns False when the draft is missing or already sent.
        Alternatives: Version drafts instead of editing in place.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE drafts
                SET subject = ?, plain_body = ?, html_body = ?, updated_at = ?
                WHERE id = ? AND user_id = ? AND is_sent = 0
                """,
                (subject, plain_body, html_body, updated_at.isoformat(), draft_id, user_id),
            )
            updated = cursor.rowcount > 0
            connection.commit()
        return updated

    def mark_draft_sent(
        self, user_id: int, draft_id: int, provider_message_id: str, sent_at: datetime
    ) -> bool:
        """Summary: Transition a draft to sent and approved, once.

        Importance: The ``is_sent = 0`` guard makes the transition one-way.
        Alternatives: Track send state in a separate outbox table.
        """

        timestamp = sent_at.isoformat()
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE drafts
                SET is_sent = 1, is_approved = 1, sent_at = ?, updated_at = ?, provider_message_id = ?
                WHERE id = ? AND user_id = ? AND is_sent = 0
                """,
                (timestamp, timestamp, provider_message_id, draft_id, user_id),
            )
            updated = cursor.rowcount > 0
            connection.commit()
        return updated

    def count_created_since(self, user_id: int, table: str, since: datetime) -> int:
        """Summary: Count a user's rows created at or after a boundary.

        Importance: Backs the daily usage meter.
        Alternatives: Maintain counters in a separate usage table.
        """

        if table not in _COUNTED_TABLES:
            raise ValueError(f"Unsupported usage table: {table}")
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT COUNT(*) FROM {table} WHERE user_id = ? AND created_at >= ?",
                (user_id, since.isoformat()),
            )
            row = cursor.fetchone()
        return int(row[0])

    def get_subscription(self, user_id: int) -> StoredSubscription | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE user_id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
        return _subscription_from_row(row) if row else None

    def upsert_subscription_customer(
        self, user_id: int, customer_ref: str, status: str, updated_at: datetime
    ) -> None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO subscriptions (user_id, customer_ref, status, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    customer_ref = excluded.customer_ref,
                    status = excluded.status,
                    updated_at = excluded.updated_at
                """,
                (user_id, customer_ref, status, updated_at.isoformat()),
            )
            connection.commit()

    def update_subscription(
        self, match_column: str, match_value: str, fields: dict[str, Any], updated_at: datetime
    ) -> int:
        """Summary: Apply a state delta to the subscription matching a processor reference.

        Importance: Processor events identify subscriptions by customer or subscription id.
        Alternatives: Look up the user id first and update by primary key.
        """

        if match_column not in {"customer_ref", "subscription_ref"}:
            raise ValueError(f"Unsupported subscription match column: {match_column}")
        unknown = set(fields) - _SUBSCRIPTION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported subscription fields: {sorted(unknown)}")
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [int(value) if isinstance(value, bool) else value for value in fields.values()]
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"UPDATE subscriptions SET {assignments}, updated_at = ? WHERE {match_column} = ?",
                (*values, updated_at.isoformat(), match_value),
            )
            updated = cursor.rowcount
            connection.commit()
        return updated

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path, timeout=10)
        try:
            yield connection
        finally:
            connection.close()


def to_utc_iso(value: datetime) -> str:
    """Summary: Render a datetime as a UTC ISO string.

    Importance: Keeps received_at lexicographically sortable in SQLite.
    Alternatives: Store epoch milliseconds.
    """

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _message_from_row(row: tuple) -> StoredMessage:
    values = list(row)
    values[11] = bool(values[11])
    values[12] = bool(values[12])
    return StoredMessage(*values)


def _draft_from_row(row: tuple) -> StoredDraft:
    values = list(row)
    values[6] = bool(values[6])
    values[7] = bool(values[7])
    return StoredDraft(*values)


def _subscription_from_row(row: tuple) -> StoredSubscription:
    values = list(row)
    values[7] = bool(values[7])
    return StoredSubscription(*values)
