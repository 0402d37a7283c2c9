"""Password hashing and opaque token helpers."""
import hashlib
from functools import lru_cache
import secrets

import bcrypt

# bcrypt only hashes the first 72 bytes and newer releases refuse longer input.
MAX_PASSWORD_BYTES = 72


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except ValueError:
        # Malformed stored hash or a password bcrypt refuses (> 72 bytes).
        return False


def password_fits_bcrypt(password: str) -> bool:
    return len(password.encode("utf-8")) <= MAX_PASSWORD_BYTES


def get_password_hash(password: str, rounds: int = 12) -> str:
    """Hash a password."""
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


@lru_cache
def _dummy_hash(rounds: int) -> str:
    return get_password_hash("authcore-dummy-password", rounds=rounds)


def burn_password_check(plain_password: str, rounds: int = 12) -> None:
    """Spend one hash comparison for an identifier that matched nothing.

    Keeps the response time of an unknown identifier in line with a wrong
    password for a real account.
    """
    verify_password(plain_password, _dummy_hash(rounds))


def hash_token(token: str) -> str:
    """Hash a bearer token before persisting or looking it up."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_refresh_token() -> str:
    """Opaque refresh token with 256 bits of entropy."""
    return secrets.token_urlsafe(32)
