"""Customer tracking identifiers and PII redaction for public lookups."""

from __future__ import annotations

import re
import secrets
import string

from glassflow.errors import ValidationError

TRACKING_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{32}$")
JOB_CODE_RE = re.compile(r"^[A-Za-z0-9]{8}$")

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def new_tracking_token() -> str:
    # 24 random bytes encode to exactly 32 url-safe characters
    return secrets.token_urlsafe(24)


def new_short_code() -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))


def validate_tracking_token(token) -> str:
    if not token or not isinstance(token, str):
        raise ValidationError("Tracking token is required", "missing_tracking_token")
    if not TRACKING_TOKEN_RE.match(token):
        raise ValidationError("Invalid tracking token format", "invalid_tracking_token")
    return token


def validate_job_code(code) -> str:
    if not code or not isinstance(code, str) or not JOB_CODE_RE.match(code):
        raise ValidationError("Invalid job code format", "invalid_job_code")
    return code.upper()


def redact_phone(phone: str | None) -> str | None:
    """Keep only the last 4 digits: ``***5678``."""
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if len(digits) < 4:
        return "***"
    return "***" + digits[-4:]


def redact_email(email: str | None) -> str | None:
    """Redact the local part after two characters: ``jo***@example.com``."""
    if not email:
        return None
    local, _, domain = email.partition("@")
    if not domain or len(local) <= 2:
        return "***@" + (domain or "***")
    return local[:2] + "***@" + domain
