"""Error taxonomy shared by the services and the HTTP layer.

Every error carries a stable machine-checkable ``kind``, a human message and
optional structured details. The API renders them as::

    {"error": {"kind": "account_locked", "message": "...", "minutes_remaining": 12}}
"""

from __future__ import annotations

from typing import Any


class AccountError(Exception):
    """Base class for every recoverable account-subsystem error."""

    kind: str = "account_error"
    default_message: str = "Something went wrong"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.details}


class ValidationError(AccountError):
    """Missing or malformed input. ``field`` names the offending field."""

    kind = "validation_error"
    default_message = "Invalid input"

    def __init__(self, message: str | None = None, field: str | None = None, **details: Any) -> None:
        if field is not None:
            details["field"] = field
        super().__init__(message, **details)


class ConflictError(AccountError):
    kind = "conflict"
    default_message = "Resource already exists"


class PolicyViolation(AccountError):
    kind = "policy_violation"
    default_message = "Operation not allowed"


class InvalidCredentials(AccountError):
    kind = "invalid_credentials"
    default_message = "Invalid credentials"


class AccountLocked(AccountError):
    kind = "account_locked"

    def __init__(self, minutes_remaining: int, message: str | None = None) -> None:
        self.minutes_remaining = minutes_remaining
        super().__init__(
            message or f"Account is locked. Try again in {minutes_remaining} minutes",
            minutes_remaining=minutes_remaining,
        )


class PendingDeletionConfirmationRequired(AccountError):
    kind = "pending_deletion"

    def __init__(self, days_remaining: int) -> None:
        self.days_remaining = days_remaining
        super().__init__(
            f"Account is scheduled for deletion in {days_remaining} days. "
            "Confirm to restore it and continue",
            days_remaining=days_remaining,
        )


class NotFound(AccountError):
    kind = "not_found"
    default_message = "Not found"


class UpstreamProviderError(AccountError):
    kind = "upstream_provider_error"
    default_message = "The identity provider could not complete the sign-in"


class Unauthorized(AccountError):
    kind = "unauthorized"
    default_message = "Unauthorized"


class InternalError(AccountError):
    kind = "internal_error"
    default_message = "Something went wrong"
