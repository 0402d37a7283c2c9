"""Shared API dependencies."""
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from authcore.config import get_settings
from authcore.errors import AuthError
from authcore.services.container import AuthServices, build_services
from authcore.services.signer import TokenClaims

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_services() -> AuthServices:
    """Process-wide services bound to the application database."""
    from authcore.database import SessionLocal

    return build_services(get_settings(), SessionLocal)


def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services: AuthServices = Depends(get_services),
) -> TokenClaims:
    """Authenticate the request from its access token alone."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return services.tokens.verify_access_token(credentials.credentials)
    except AuthError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
