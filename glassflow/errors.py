"""Workflow error taxonomy.

Every error carries a human-readable ``message`` (shown to the user as-is) and
a machine-readable ``reason`` string. ``status_code`` is what the HTTP layer
renders.
"""

from __future__ import annotations


class WorkflowError(Exception):
    status_code = 500
    default_reason = "error"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason

    def to_dict(self) -> dict:
        return {"error": self.message, "reason": self.reason}


class ValidationError(WorkflowError):
    status_code = 400
    default_reason = "invalid_input"


class TooManyShopsError(ValidationError):
    default_reason = "too_many_shops"


class NotFoundError(WorkflowError):
    status_code = 404
    default_reason = "not_found"


class ConflictError(WorkflowError):
    status_code = 409
    default_reason = "conflict"


class DuplicateOfferError(ConflictError):
    default_reason = "duplicate_offer"


class AlreadyRespondedError(ConflictError):
    default_reason = "already_responded"


class ExpiredError(WorkflowError):
    status_code = 410
    default_reason = "expired"


class ExpiredOfferError(ExpiredError):
    default_reason = "offer_expired"


class RateLimitedError(WorkflowError):
    status_code = 429
    default_reason = "rate_limited"

    def __init__(self, message: str = "Too many requests. Please try again later.",
                 reason: str | None = None, retry_after: int = 3600):
        super().__init__(message, reason)
        self.retry_after = retry_after


class InternalError(WorkflowError):
    status_code = 500
    default_reason = "internal_error"
