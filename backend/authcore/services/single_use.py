"""Email-verification and password-reset tokens."""
from datetime import datetime, timedelta
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from authcore.config import Settings
from authcore.database import get_db_context
from authcore.errors import AuthError, ErrorKind
from authcore.models.auth import IssuedToken
from authcore.security import hash_token
from authcore.services.signer import PASSWORD_RESET, VERIFICATION, Signer, TokenClaims
from authcore.timeutils import Clock, utcnow

logger = logging.getLogger(__name__)

SINGLE_USE_TYPES = (VERIFICATION, PASSWORD_RESET)


class IssuedTokenStore:
    """Last-issued token per (subject, type), stored as a hash."""

    def __init__(self, session_factory: sessionmaker, clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def put(self, subject_id: str, token_type: str, token: str, expires_at: datetime) -> None:
        """Record ``token`` as the only redeemable one, superseding any other."""
        values = {
            "token_hash": hash_token(token),
            "issued_at": self._clock(),
            "expires_at": expires_at,
        }
        try:
            self._upsert(subject_id, token_type, values)
        except IntegrityError:
            # A concurrent issue inserted first; overwrite it.
            self._upsert(subject_id, token_type, values)

    def _upsert(self, subject_id: str, token_type: str, values: dict) -> None:
        with get_db_context(self._session_factory) as db:
            updated = db.query(IssuedToken).filter(
                IssuedToken.subject_id == subject_id,
                IssuedToken.token_type == token_type,
            ).update(values, synchronize_session=False)
            if not updated:
                db.add(IssuedToken(subject_id=subject_id, token_type=token_type, **values))
                db.flush()

    def last_issued_at(self, subject_id: str, token_type: str) -> datetime | None:
        with get_db_context(self._session_factory) as db:
            record = db.query(IssuedToken).filter(
                IssuedToken.subject_id == subject_id,
                IssuedToken.token_type == token_type,
                IssuedToken.expires_at > self._clock(),
            ).first()
            return record.issued_at if record else None

    def consume(self, subject_id: str, token_type: str, token: str) -> bool:
        """Atomically delete the record if it still holds ``token``."""
        with get_db_context(self._session_factory) as db:
            deleted = db.query(IssuedToken).filter(
                IssuedToken.subject_id == subject_id,
                IssuedToken.token_type == token_type,
                IssuedToken.token_hash == hash_token(token),
                IssuedToken.expires_at > self._clock(),
            ).delete(synchronize_session=False)
        return deleted == 1

    def delete_expired(self) -> int:
        with get_db_context(self._session_factory) as db:
            return db.query(IssuedToken).filter(
                IssuedToken.expires_at <= self._clock(),
            ).delete(synchronize_session=False)


class SingleUseTokenService:
    """Issue and redeem single-use tokens.

    With ``single_use_reuse_restriction`` enabled only the most recently
    issued token of a type is redeemable for a subject, and only once.
    Without it tokens are purely stateless and valid until they expire.
    """

    def __init__(
        self,
        settings: Settings,
        signer: Signer,
        token_store: IssuedTokenStore,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.signer = signer
        self.token_store = token_store
        self._clock = clock

    @property
    def reuse_restriction(self) -> bool:
        return self.settings.single_use_reuse_restriction

    def default_ttl(self, token_type: str) -> timedelta:
        if token_type == VERIFICATION:
            return timedelta(hours=self.settings.verification_token_expire_hours)
        if token_type == PASSWORD_RESET:
            return timedelta(minutes=self.settings.password_reset_token_expire_minutes)
        raise ValueError(f"Unknown single-use token type: {token_type}")

    def issue(self, subject_id: str, email: str, token_type: str, ttl: timedelta | None = None) -> str:
        ttl = ttl or self.default_ttl(token_type)
        token = self.signer.issue(subject_id, token_type, ttl, email=email)
        if self.reuse_restriction:
            self.token_store.put(subject_id, token_type, token, self._clock() + ttl)
        return token

    def ensure_can_issue(self, subject_id: str, token_type: str) -> None:
        """RATE_LIMITED if a token of this type went out too recently."""
        if not self.reuse_restriction:
            return
        last = self.token_store.last_issued_at(subject_id, token_type)
        interval = timedelta(seconds=self.settings.single_use_resend_interval_seconds)
        if last is not None and self._clock() - last < interval:
            raise AuthError(ErrorKind.RATE_LIMITED, f"{token_type} token for {subject_id} issued too recently")

    def redeem(self, token: str, expected_type: str) -> TokenClaims:
        """Verify ``token`` and, when restricted, consume its record.

        Raises ``AuthError`` with the Signer's kinds, or SUPERSEDED when a
        newer token was issued or this one was already redeemed.
        """
        if expected_type not in SINGLE_USE_TYPES:
            raise ValueError(f"Unknown single-use token type: {expected_type}")

        claims = self.signer.verify(token, expected_type)
        if self.reuse_restriction and not self.token_store.consume(claims.subject_id, expected_type, token):
            logger.warning(f"Superseded or spent {expected_type} token presented for {claims.subject_id}")
            raise AuthError(ErrorKind.SUPERSEDED, "Token was superseded or already used")
        return claims

    def cleanup(self) -> int:
        return self.token_store.delete_expired()
