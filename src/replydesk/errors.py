"""Summary: Error taxonomy for ReplyDesk operations.

Importance: Gives every pipeline failure a stable code and HTTP status for callers.
Alternatives: Raise ValueError/RuntimeError and map messages at the API layer.
"""

from __future__ import annotations


class ReplyDeskError(Exception):
    """Summary: Base error carrying a machine-readable code and HTTP status.

    Importance: Lets the API and CLI render failures without inspecting types.
    Alternatives: Use HTTPException directly inside services.
    """

    code = "REPLYDESK_ERROR"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthRequired(ReplyDeskError):
    """Summary: Raised when a request carries no valid API key."""

    code = "AUTH_REQUIRED"
    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class CredentialMissing(ReplyDeskError):
    """Summary: Raised when the user has not connected a mailbox."""

    code = "CREDENTIAL_MISSING"
    status_code = 400

    def __init__(self, message: str = "Gmail not connected") -> None:
        super().__init__(message)


class CredentialExpired(ReplyDeskError):
    """Summary: Raised when the stored credential is expired and refresh failed.

    Importance: Signals the caller to prompt for re-authorization.
    Alternatives: Retry refresh in a loop until it succeeds.
    """

    code = "CREDENTIAL_EXPIRED"
    status_code = 401

    def __init__(self, message: str = "Gmail authorization expired, please reconnect") -> None:
        super().__init__(message)


class MalformedMessage(ReplyDeskError):
    """Summary: Raised when a message part tree exceeds the traversal bounds."""

    code = "MALFORMED_MESSAGE"
    status_code = 422


class GenerationFailed(ReplyDeskError):
    """Summary: Raised when the completion backend errors or returns nothing."""

    code = "GENERATION_FAILED"
    status_code = 502


class SendFailed(ReplyDeskError):
    """Summary: Raised when the provider rejects a send request."""

    code = "SEND_FAILED"
    status_code = 502


class AlreadySent(ReplyDeskError):
    """Summary: Raised on any attempt to send or edit a draft that was already sent."""

    code = "ALREADY_SENT"
    status_code = 409

    def __init__(self, message: str = "Draft has already been sent") -> None:
        super().__init__(message)


class LimitExceeded(ReplyDeskError):
    """Summary: Raised when the daily usage ceiling for the tier is reached."""

    code = "LIMIT_EXCEEDED"
    status_code = 429


class NotFound(ReplyDeskError):
    """Summary: Raised when an entity is absent or owned by another user."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} {resource_id} not found"
        super().__init__(message)


class MailboxError(ReplyDeskError):
    """Summary: Raised when a mailbox list or get request fails."""

    code = "MAILBOX_ERROR"
    status_code = 502


class BillingError(ReplyDeskError):
    """Summary: Raised when the payment processor rejects a request."""

    code = "BILLING_ERROR"
    status_code = 502


class AlreadySubscribed(ReplyDeskError):
    """Summary: Raised when checkout is started for a user with an active subscription."""

    code = "ALREADY_SUBSCRIBED"
    status_code = 409

    def __init__(self, message: str = "You already have an active subscription") -> None:
        super().__init__(message)
