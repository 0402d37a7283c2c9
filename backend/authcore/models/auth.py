"""Authentication/session models."""
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from authcore.database import Base
from authcore.timeutils import utcnow


class AuthSession(Base):
    """One authenticated device, bound to its current refresh token by hash.

    ``session_id`` is the SHA-256 of the refresh token currently valid for
    this session and changes on every rotation; ``id`` never changes.
    """

    __tablename__ = "auth_sessions"
    __table_args__ = (
        Index("ix_auth_sessions_user_created", "user_id", "created_at"),
        Index("ix_auth_sessions_user_agent", "user_id", "user_agent"),
        Index("ix_auth_sessions_expires_at", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    last_used_at = Column(DateTime)
    revoked = Column(Boolean, nullable=False, default=False)
    user_agent = Column(String(255))
    ip_address = Column(String(45))

    user = relationship("User", back_populates="auth_sessions")


class IssuedToken(Base):
    """Last issued single-use token per (subject, type).

    Issuing a new token overwrites the row, superseding any earlier token of
    the same type. Only the SHA-256 of the token is stored.
    """

    __tablename__ = "issued_tokens"
    __table_args__ = (
        Index("ix_issued_tokens_expires_at", "expires_at"),
    )

    subject_id = Column(String(36), primary_key=True)
    token_type = Column(String(32), primary_key=True)
    token_hash = Column(String(64), nullable=False)
    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
