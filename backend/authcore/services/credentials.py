"""Credential store backed by the ``users`` table."""
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from authcore.database import get_db_context
from authcore.errors import AuthError, ErrorKind
from authcore.models.user import User


@dataclass(frozen=True)
class Credential:
    """Read-only view of an account as seen by the token services."""

    id: str
    username: str
    email: str
    role: str
    password_hash: str | None
    is_email_verified: bool
    display_name: str | None = None

    @classmethod
    def from_user(cls, user: User) -> "Credential":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            password_hash=user.password_hash,
            is_email_verified=bool(user.is_email_verified),
            display_name=user.display_name,
        )


class CredentialStore(Protocol):
    def find_by_identifier(self, identifier: str) -> Credential | None: ...

    def find_by_id(self, user_id: str) -> Credential | None: ...

    def update_password_hash(self, user_id: str, password_hash: str) -> None: ...

    def mark_email_verified(self, user_id: str) -> None: ...


class SqlCredentialStore:
    """``CredentialStore`` over SQLAlchemy."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_by_identifier(self, identifier: str) -> Credential | None:
        """Find user by username or email."""
        with get_db_context(self._session_factory) as db:
            user = db.query(User).filter(
                (User.username == identifier) | (User.email == identifier.lower())
            ).first()
            return Credential.from_user(user) if user else None

    def find_by_id(self, user_id: str) -> Credential | None:
        with get_db_context(self._session_factory) as db:
            user = db.query(User).filter(User.id == user_id).first()
            return Credential.from_user(user) if user else None

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        with get_db_context(self._session_factory) as db:
            db.query(User).filter(User.id == user_id).update(
                {"password_hash": password_hash},
                synchronize_session=False,
            )

    def mark_email_verified(self, user_id: str) -> None:
        with get_db_context(self._session_factory) as db:
            db.query(User).filter(User.id == user_id).update(
                {"is_email_verified": True},
                synchronize_session=False,
            )

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str | None,
        display_name: str | None = None,
        role: str = "user",
        is_email_verified: bool = False,
    ) -> Credential:
        """Create an account; CONFLICT if the username or email is taken."""
        email = email.lower()
        with get_db_context(self._session_factory) as db:
            taken = db.query(User).filter(
                (User.username == username) | (User.email == email)
            ).first()
            if taken:
                raise AuthError(ErrorKind.CONFLICT, "Username or email already registered")

            user = User(
                username=username,
                email=email,
                password_hash=password_hash,
                display_name=display_name,
                role=role,
                is_email_verified=is_email_verified,
            )
            db.add(user)
            try:
                db.flush()
            except IntegrityError as exc:
                raise AuthError(ErrorKind.CONFLICT, "Username or email already registered") from exc
            return Credential.from_user(user)
