"""SQLAlchemy models package."""
from authcore.models.user import User
from authcore.models.auth import AuthSession, IssuedToken

__all__ = [
    "User",
    "AuthSession",
    "IssuedToken",
]
