"""Summary: Normalizes raw Gmail message payloads into Message records.

Importance: Turns nested MIME part trees and headers into text the drafting pipeline can use.
Alternatives: Store raw provider payloads and parse them at display time.
"""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from replydesk.classifier import AlwaysReplyClassifier, ReplyClassifier
from replydesk.errors import MalformedMessage
from replydesk.models import Message


logger = logging.getLogger(__name__)

MAX_PART_DEPTH = 20

_SENDER_PATTERN = re.compile(r"^(.*?)\s*<(.*)>$")


def normalize(
    raw_message: dict[str, Any],
    classifier: ReplyClassifier | None = None,
    max_depth: int = MAX_PART_DEPTH,
) -> Message:
    """Summary: Build a Message from a Gmail ``format=full`` payload.

    Importance: Single entry point for ingestion; never raises on a malformed part tree.
    Alternatives: Reject the whole message when its body cannot be read.
    """

    payload = raw_message.get("payload") or {}
    headers = parse_headers(payload.get("headers", []))
    sender_name, sender_address = parse_sender(headers.get("from", ""))
    provider_message_id = raw_message.get("id", "")
    malformed = False
    try:
        plain_body, html_body = extract_bodies(payload, max_depth=max_depth)
    except MalformedMessage as exc:
        logger.warning("Skipping body of message %s: %s", provider_message_id, exc.message)
        plain_body, html_body = "", ""
        malformed = True
    message = Message(
        provider_message_id=provider_message_id,
        thread_id=raw_message.get("threadId"),
        sender_address=sender_address,
        sender_name=sender_name,
        recipients=headers.get("to", ""),
        subject=headers.get("subject", ""),
        plain_body=plain_body,
        html_body=html_body,
        received_at=_received_at(headers.get("date", ""), raw_message.get("internalDate")),
        is_read="UNREAD" not in (raw_message.get("labelIds") or []),
        requires_reply=False,
        is_malformed=malformed,
    )
    classifier = classifier or AlwaysReplyClassifier()
    return replace(message, requires_reply=classifier.requires_reply(message))


def extract_bodies(payload: dict[str, Any], max_depth: int = MAX_PART_DEPTH) -> tuple[str, str]:
    """Summary: Find the first text/plain and first text/html parts depth-first.

    Importance: Handles nested multipart/mixed and multipart/alternative trees.
    Alternatives: Use only the top-level body or the provider snippet.

    The walk uses an explicit stack so adversarial nesting cannot exhaust the
    interpreter's call stack. Raises MalformedMessage once a part sits deeper
    than ``max_depth``, which also bounds cyclic trees.
    """

    plain_body: str | None = None
    html_body: str | None = None
    stack: list[tuple[dict[str, Any], int]] = [(payload, 0)]
    while stack:
        part, depth = stack.pop()
        if depth > max_depth:
            raise MalformedMessage(f"MIME part tree deeper than {max_depth} levels")
        children = part.get("parts") or []
        if children:
            # Reversed so the leftmost child is visited first.
            stack.extend((child, depth + 1) for child in reversed(children))
            continue
        data = (part.get("body") or {}).get("data")
        if not data:
            continue
        mime_type = (part.get("mimeType") or "").lower()
        if mime_type == "text/plain" and plain_body is None:
            plain_body = _decode_part(data, mime_type)
        elif mime_type == "text/html" and html_body is None:
            html_body = _decode_part(data, mime_type)
    return plain_body or "", html_body or ""


def _decode_part(data: str, mime_type: str) -> str:
    try:
        return decode_base64url(data)
    except ValueError as exc:
        # binascii.Error and UnicodeEncodeError are both ValueError subclasses.
        raise MalformedMessage(f"Undecodable {mime_type} body: {exc}") from exc


def parse_sender(value: str) -> tuple[str, str]:
    """Summary: Split a From header into display name and address.

    Importance: Drafts address the sender by name when one is available.
    Alternatives: Use email.utils.parseaddr for full RFC 5322 parsing.
    """

    match = _SENDER_PATTERN.match(value.strip())
    if not match:
        return "", value.strip()
    return match.group(1).strip().strip('"'), match.group(2).strip()


def parse_headers(headers: list[dict[str, Any]]) -> dict[str, str]:
    """Summary: Map a Gmail header list to a lowercase-keyed dictionary.

    Importance: Header names are case-insensitive; the first occurrence wins.
    Alternatives: Scan the header list inline for each field.
    """

    normalized: dict[str, str] = {}
    for header in headers:
        name = header.get("name")
        value = header.get("value")
        if name and value is not None:
            normalized.setdefault(name.lower(), value)
    return normalized


def decode_base64url(data: str) -> str:
    """Summary: Decode base64url-encoded Gmail content.

    Importance: Gmail omits padding, so it is restored before decoding.
    Alternatives: Use a third-party Gmail client library.
    """

    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="ignore")


def _received_at(date_header: str, internal_date: str | int | None) -> datetime:
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
    if internal_date:
        try:
            return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            pass
    return datetime.now(timezone.utc)
