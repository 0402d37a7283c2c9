"""Persistence of refresh-token sessions."""
from datetime import datetime, timedelta
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from authcore.database import get_db_context
from authcore.errors import AuthError, ErrorKind
from authcore.models.auth import AuthSession
from authcore.timeutils import Clock, utcnow

logger = logging.getLogger(__name__)


class SessionStore:
    """Session rows keyed uniquely by ``session_id``.

    Every method runs in its own transaction, so each call is atomic and
    its effect is visible to concurrent callers once it returns.
    """

    def __init__(self, session_factory: sessionmaker, clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def create(self, auth_session: AuthSession) -> AuthSession:
        """Insert a new session; CONFLICT if its ``session_id`` is taken."""
        try:
            with get_db_context(self._session_factory) as db:
                db.add(auth_session)
                db.flush()
        except IntegrityError as exc:
            if self.find_by_session_id(auth_session.session_id, include_inactive=True) is not None:
                raise AuthError(ErrorKind.CONFLICT, "Session id already exists") from exc
            raise
        return auth_session

    def find_by_session_id(self, session_id: str, include_inactive: bool = False) -> AuthSession | None:
        with get_db_context(self._session_factory) as db:
            query = db.query(AuthSession).filter(AuthSession.session_id == session_id)
            if not include_inactive:
                query = query.filter(
                    AuthSession.revoked.is_(False),
                    AuthSession.expires_at > self._clock(),
                )
            return query.first()

    def compare_and_rotate(
        self,
        old_session_id: str,
        new_session_id: str,
        new_expires_at: datetime,
    ) -> AuthSession | None:
        """Swap ``old_session_id`` for ``new_session_id`` if the session is live.

        A single conditional UPDATE: either ``session_id``, ``last_used_at``
        and ``expires_at`` all change, or nothing does. Returns None when the
        old id is unknown, revoked, expired or was already rotated away.
        """
        with get_db_context(self._session_factory) as db:
            now = self._clock()
            rotated = db.query(AuthSession).filter(
                AuthSession.session_id == old_session_id,
                AuthSession.revoked.is_(False),
                AuthSession.expires_at > now,
            ).update(
                {
                    "session_id": new_session_id,
                    "last_used_at": now,
                    "expires_at": new_expires_at,
                },
                synchronize_session=False,
            )
            if rotated != 1:
                return None
            return db.query(AuthSession).filter(AuthSession.session_id == new_session_id).one()

    def revoke(self, session_id: str) -> None:
        """Mark a session revoked. Succeeds whether or not it exists."""
        with get_db_context(self._session_factory) as db:
            db.query(AuthSession).filter(
                AuthSession.session_id == session_id,
                AuthSession.revoked.is_(False),
            ).update(
                {"revoked": True, "last_used_at": self._clock()},
                synchronize_session=False,
            )

    def revoke_by_id(self, user_id: str, id: str) -> bool:
        """Revoke one session by its stable id, scoped to its owner."""
        with get_db_context(self._session_factory) as db:
            revoked = db.query(AuthSession).filter(
                AuthSession.id == id,
                AuthSession.user_id == user_id,
                AuthSession.revoked.is_(False),
            ).update(
                {"revoked": True, "last_used_at": self._clock()},
                synchronize_session=False,
            )
        return revoked == 1

    def revoke_all_for_user(self, user_id: str, keep_id: str | None = None) -> int:
        """Revoke all active sessions for a user, optionally sparing one."""
        with get_db_context(self._session_factory) as db:
            query = db.query(AuthSession).filter(
                AuthSession.user_id == user_id,
                AuthSession.revoked.is_(False),
            )
            if keep_id is not None:
                query = query.filter(AuthSession.id != keep_id)
            return query.update(
                {"revoked": True, "last_used_at": self._clock()},
                synchronize_session=False,
            )

    def delete_sessions_for_user_by_agent(self, user_id: str, user_agent: str) -> int:
        with get_db_context(self._session_factory) as db:
            return db.query(AuthSession).filter(
                AuthSession.user_id == user_id,
                AuthSession.user_agent == user_agent,
            ).delete(synchronize_session=False)

    def count_recent_for_user(self, user_id: str, window: timedelta) -> int:
        """Sessions created for the user inside the trailing ``window``."""
        with get_db_context(self._session_factory) as db:
            return db.query(AuthSession).filter(
                AuthSession.user_id == user_id,
                AuthSession.created_at >= self._clock() - window,
            ).count()

    def list_active_for_user(self, user_id: str) -> list[AuthSession]:
        with get_db_context(self._session_factory) as db:
            return db.query(AuthSession).filter(
                AuthSession.user_id == user_id,
                AuthSession.revoked.is_(False),
                AuthSession.expires_at > self._clock(),
            ).order_by(AuthSession.created_at.desc()).all()

    def delete_expired_or_revoked(self) -> int:
        """Garbage-collect dead sessions. Idempotent and safe to run concurrently."""
        with get_db_context(self._session_factory) as db:
            deleted = db.query(AuthSession).filter(
                or_(
                    AuthSession.revoked.is_(True),
                    AuthSession.expires_at <= self._clock(),
                )
            ).delete(synchronize_session=False)
        logger.debug(f"Deleted {deleted} expired or revoked sessions")
        return deleted
