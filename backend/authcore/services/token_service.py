"""Login, refresh-token rotation, logout and session revocation.

Session states: active (not revoked, not expired), revoked (terminal) and
expired (terminal, detected lazily by time comparison). Every transition out
of active, and every rotation, is a single conditional write in the
``SessionStore``; nothing here keeps in-memory session state.
"""
from dataclasses import dataclass
from datetime import timedelta
import logging

from authcore.config import Settings
from authcore.errors import AuthError, ErrorKind
from authcore.models.auth import AuthSession
from authcore.security import (
    burn_password_check,
    generate_refresh_token,
    hash_token,
    verify_password,
)
from authcore.services import events
from authcore.services.credentials import Credential, CredentialStore
from authcore.services.events import EventDispatcher
from authcore.services.session_store import SessionStore
from authcore.services.signer import ACCESS, Signer, TokenClaims
from authcore.timeutils import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceInfo:
    """Client metadata recorded on the session."""

    user_agent: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    session: AuthSession
    token_type: str = "bearer"


class TokenService:
    """Issue access/refresh token pairs and manage the sessions behind them."""

    def __init__(
        self,
        settings: Settings,
        signer: Signer,
        session_store: SessionStore,
        credential_store: CredentialStore,
        dispatcher: EventDispatcher | None = None,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.signer = signer
        self.session_store = session_store
        self.credential_store = credential_store
        self.dispatcher = dispatcher or EventDispatcher()
        self._clock = clock

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_expire_minutes)

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_expire_days)

    def login(self, identifier: str, password: str, device: DeviceInfo | None = None) -> TokenPair:
        """Verify credentials and open a new session."""
        device = device or DeviceInfo()
        credential = self.credential_store.find_by_identifier(identifier)
        if credential is None:
            burn_password_check(password, self.settings.bcrypt_rounds)
            raise AuthError(ErrorKind.INVALID_CREDENTIALS, "Unknown identifier")

        # Checked before the password so the answer is the same either way.
        if not credential.is_email_verified:
            raise AuthError(ErrorKind.EMAIL_NOT_VERIFIED, f"User {credential.id} has not verified their email")

        if not credential.password_hash:
            burn_password_check(password, self.settings.bcrypt_rounds)
            raise AuthError(ErrorKind.INVALID_CREDENTIALS, f"User {credential.id} has no password set")

        if not verify_password(password, credential.password_hash):
            raise AuthError(ErrorKind.INVALID_CREDENTIALS, f"Wrong password for user {credential.id}")

        self._collapse_prior_sessions(credential.id, device)
        auth_session, refresh_token = self._create_session(credential.id, device)
        access_token = self._issue_access_token(credential)

        self._check_suspicious_activity(credential.id, keep_id=auth_session.id)

        logger.info(f"User {credential.id} logged in, session {auth_session.id}")
        return TokenPair(access_token=access_token, refresh_token=refresh_token, session=auth_session)

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token.

        Unknown, expired, revoked and already-rotated tokens all fail with
        the same kind.
        """
        if not refresh_token:
            raise AuthError(ErrorKind.INVALID_OR_REUSED_REFRESH_TOKEN, "Missing refresh token")

        old_session_id = hash_token(refresh_token)
        new_refresh_token = generate_refresh_token()
        auth_session = self.session_store.compare_and_rotate(
            old_session_id,
            hash_token(new_refresh_token),
            self._clock() + self.session_ttl,
        )
        if auth_session is None:
            logger.warning("Rejected invalid or reused refresh token")
            raise AuthError(ErrorKind.INVALID_OR_REUSED_REFRESH_TOKEN, "Refresh token is invalid or reused")

        # Role and email are re-read so changes take effect on the next refresh.
        credential = self.credential_store.find_by_id(auth_session.user_id)
        if credential is None:
            self.session_store.revoke(auth_session.session_id)
            logger.warning(f"Session {auth_session.id} belongs to a deleted user; revoked")
            raise AuthError(ErrorKind.INVALID_OR_REUSED_REFRESH_TOKEN, "Session owner no longer exists")

        logger.debug(f"Rotated session {auth_session.id}")
        return TokenPair(
            access_token=self._issue_access_token(credential),
            refresh_token=new_refresh_token,
            session=auth_session,
        )

    def logout(self, refresh_token: str | None) -> None:
        """Revoke the session behind ``refresh_token``. Never fails."""
        if not refresh_token:
            return
        self.session_store.revoke(hash_token(refresh_token))

    def revoke_all(self, user_id: str, reason: str = "revoke_all") -> int:
        """Revoke every active session of a user."""
        count = self.session_store.revoke_all_for_user(user_id)
        self.dispatcher.emit(events.SESSIONS_REVOKED_ALL, user_id, count=count, reason=reason)
        return count

    def list_sessions(self, user_id: str) -> list[AuthSession]:
        return self.session_store.list_active_for_user(user_id)

    def revoke_session(self, user_id: str, id: str) -> None:
        """Revoke one of the user's own sessions by its stable id."""
        if not self.session_store.revoke_by_id(user_id, id):
            raise AuthError(ErrorKind.NOT_FOUND, f"No active session {id} for user {user_id}")
        self.dispatcher.emit(events.SESSION_REVOKED, user_id, session=id)

    def verify_access_token(self, token: str) -> TokenClaims:
        """Stateless check: signature, expiry and type only."""
        return self.signer.verify(token, ACCESS)

    def cleanup_sessions(self) -> int:
        return self.session_store.delete_expired_or_revoked()

    def _issue_access_token(self, credential: Credential) -> str:
        return self.signer.issue(
            credential.id,
            ACCESS,
            self.access_token_ttl,
            email=credential.email,
            role=credential.role,
        )

    def _collapse_prior_sessions(self, user_id: str, device: DeviceInfo) -> None:
        if self.settings.login_session_policy == "same_device" and device.user_agent:
            removed = self.session_store.delete_sessions_for_user_by_agent(user_id, device.user_agent)
            if removed:
                logger.info(f"Collapsed {removed} prior session(s) for user {user_id} on the same device")
            return
        revoked = self.session_store.revoke_all_for_user(user_id)
        if revoked:
            logger.info(f"Revoked {revoked} prior session(s) for user {user_id} at login")

    def _create_session(self, user_id: str, device: DeviceInfo) -> tuple[AuthSession, str]:
        """Persist a new session; a session-id collision is retried once."""
        try:
            return self._insert_session(user_id, device)
        except AuthError as exc:
            if exc.kind != ErrorKind.CONFLICT:
                raise
            logger.warning(f"Session id collision for user {user_id}; regenerating")
            return self._insert_session(user_id, device)

    def _insert_session(self, user_id: str, device: DeviceInfo) -> tuple[AuthSession, str]:
        refresh_token = generate_refresh_token()
        now = self._clock()
        auth_session = self.session_store.create(AuthSession(
            session_id=hash_token(refresh_token),
            user_id=user_id,
            created_at=now,
            last_used_at=now,
            expires_at=now + self.session_ttl,
            user_agent=device.user_agent,
            ip_address=device.ip_address,
        ))
        self.dispatcher.emit(events.SESSION_CREATED, user_id, session=auth_session.id)
        return auth_session, refresh_token

    def _check_suspicious_activity(self, user_id: str, keep_id: str) -> None:
        """Circuit breaker on the rate of new sessions for one user."""
        window = timedelta(hours=self.settings.suspicious_session_window_hours)
        recent = self.session_store.count_recent_for_user(user_id, window)
        if recent <= self.settings.suspicious_session_threshold:
            return
        # The session just opened by this login survives; every other one goes.
        revoked = self.session_store.revoke_all_for_user(user_id, keep_id=keep_id)
        self.dispatcher.emit(
            events.SUSPICIOUS_ACTIVITY,
            user_id,
            recent_sessions=recent,
            revoked=revoked,
        )
