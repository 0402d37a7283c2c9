"""Signed claim tokens (JWT) with an embedded type discriminator."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import uuid

from jose import jwt
from jose.exceptions import JOSEError

from authcore.errors import AuthError, ErrorKind
from authcore.timeutils import Clock, from_epoch, to_epoch, utcnow

ACCESS = "access"
VERIFICATION = "verification"
PASSWORD_RESET = "password-reset"

_RESERVED_CLAIMS = {"sub", "type", "iat", "exp", "jti"}


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a signed token."""

    subject_id: str
    token_type: str
    issued_at: datetime
    expires_at: datetime
    email: str | None = None
    role: str | None = None
    extra: dict = field(default_factory=dict)


class Signer:
    """Issue and verify tamper-evident claim tokens.

    Expiry is checked against the injected clock rather than by python-jose,
    so a token is rejected exactly when ``now >= expires_at``.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", clock: Clock = utcnow):
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._clock = clock

    def issue(self, subject_id: str, token_type: str, ttl: timedelta, **claims) -> str:
        """Sign ``claims`` for ``subject_id`` valid for ``ttl``."""
        clashing = _RESERVED_CLAIMS.intersection(claims)
        if clashing:
            raise ValueError(f"Reserved claims cannot be overridden: {sorted(clashing)}")

        issued_at = to_epoch(self._clock())
        to_encode = {key: value for key, value in claims.items() if value is not None}
        to_encode.update({
            "sub": subject_id,
            "type": token_type,
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
            # Two tokens issued in the same second must still differ.
            "jti": uuid.uuid4().hex,
        })
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str, expected_type: str) -> TokenClaims:
        """Return the verified claims or raise ``AuthError``.

        Kinds: MALFORMED, INVALID_SIGNATURE, EXPIRED, WRONG_TYPE.
        """
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JOSEError as exc:
            raise AuthError(ErrorKind.MALFORMED, "Token could not be parsed") from exc

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JOSEError as exc:
            raise AuthError(ErrorKind.INVALID_SIGNATURE, "Token signature is invalid") from exc

        subject_id = payload.get("sub")
        token_type = payload.get("type")
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        if not isinstance(subject_id, str) or not isinstance(token_type, str):
            raise AuthError(ErrorKind.MALFORMED, "Token is missing required claims")
        if not isinstance(issued_at, int) or not isinstance(expires_at, int):
            raise AuthError(ErrorKind.MALFORMED, "Token is missing required claims")

        if to_epoch(self._clock()) >= expires_at:
            raise AuthError(ErrorKind.EXPIRED, "Token has expired")

        if token_type != expected_type:
            raise AuthError(ErrorKind.WRONG_TYPE, f"Expected a {expected_type} token")

        extra = {key: value for key, value in payload.items() if key not in _RESERVED_CLAIMS | {"email", "role"}}
        return TokenClaims(
            subject_id=subject_id,
            token_type=token_type,
            issued_at=from_epoch(issued_at),
            expires_at=from_epoch(expires_at),
            email=payload.get("email"),
            role=payload.get("role"),
            extra=extra,
        )
