"""Error kinds raised by the session and token services.

Every failure is an ``AuthError`` carrying an ``ErrorKind``; callers branch
on ``error.kind`` rather than on exception subclasses. ``public_message`` is
what may be shown to an external caller and deliberately collapses the
credential and token kinds into one generic answer.
"""
from enum import Enum


class ErrorKind(str, Enum):
    """Stable error kinds."""

    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    INVALID_OR_REUSED_REFRESH_TOKEN = "invalid_or_reused_refresh_token"
    EXPIRED = "expired"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED = "malformed"
    WRONG_TYPE = "wrong_type"
    SUPERSEDED = "superseded"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    INVALID_PASSWORD = "invalid_password"


GENERIC_AUTH_FAILURE = "Authentication failed"

_STATUS_CODES = {
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.EMAIL_NOT_VERIFIED: 403,
    ErrorKind.INVALID_OR_REUSED_REFRESH_TOKEN: 401,
    ErrorKind.EXPIRED: 401,
    ErrorKind.INVALID_SIGNATURE: 401,
    ErrorKind.MALFORMED: 401,
    ErrorKind.WRONG_TYPE: 401,
    ErrorKind.SUPERSEDED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.INVALID_PASSWORD: 422,
}

_PUBLIC_MESSAGES = {
    ErrorKind.EMAIL_NOT_VERIFIED: "Please verify your email before logging in",
    ErrorKind.NOT_FOUND: "Not found",
    ErrorKind.CONFLICT: "Username or email already registered",
    ErrorKind.RATE_LIMITED: "Please wait before requesting another email",
    ErrorKind.INVALID_PASSWORD: "Password must be at most 72 bytes",
}


class AuthError(Exception):
    """Terminal failure of an authentication operation."""

    def __init__(self, kind: ErrorKind, message: str | None = None) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    @property
    def public_message(self) -> str:
        return _PUBLIC_MESSAGES.get(self.kind, GENERIC_AUTH_FAILURE)

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, {self.message!r})"
