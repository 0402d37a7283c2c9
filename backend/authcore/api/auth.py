"""Authentication API endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from authcore.api.deps import get_current_claims, get_services
from authcore.errors import AuthError
from authcore.schemas.auth import (
    ChangePassword,
    EmailRequest,
    MessageResponse,
    ResetPassword,
    SessionResponse,
    Token,
    TokenRefresh,
    UserLogin,
    UserRegister,
    UserResponse,
    VerifyEmail,
)
from authcore.services.container import AuthServices
from authcore.services.signer import TokenClaims
from authcore.services.token_service import DeviceInfo, TokenPair

router = APIRouter(prefix="/auth", tags=["auth"])


def auth_http_error(exc: AuthError) -> HTTPException:
    """Map an error kind to a response that reveals nothing beyond its status."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return HTTPException(status_code=exc.status_code, detail=exc.public_message, headers=headers)


def set_refresh_cookie(response: Response, services: AuthServices, refresh_token: str) -> None:
    """Issue secure HttpOnly refresh-token cookie."""
    settings = services.settings
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=refresh_token,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite=settings.refresh_cookie_samesite,
        path=settings.refresh_cookie_path,
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
    )


def clear_refresh_cookie(response: Response, services: AuthServices) -> None:
    """Clear refresh-token cookie."""
    settings = services.settings
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        secure=settings.refresh_cookie_secure,
        httponly=True,
        samesite=settings.refresh_cookie_samesite,
    )


def get_request_ip(request: Request) -> str | None:
    """Extract best-effort client IP for session metadata."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def get_presented_refresh_token(
    request: Request,
    services: AuthServices,
    payload: TokenRefresh | None,
) -> str | None:
    """Body token (mobile) takes precedence over the cookie (web)."""
    if payload and payload.refresh_token:
        return payload.refresh_token
    return request.cookies.get(services.settings.refresh_cookie_name)


def token_response(response: Response, services: AuthServices, pair: TokenPair) -> Token:
    set_refresh_cookie(response, services, pair.refresh_token)
    return Token(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=int(services.tokens.access_token_ttl.total_seconds()),
    )


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(user_data: UserRegister, services: AuthServices = Depends(get_services)):
    """Register a new user; a verification email is sent."""
    try:
        return services.accounts.register(
            username=user_data.username,
            email=user_data.email,
            password=user_data.password,
            display_name=user_data.display_name,
        )
    except AuthError as exc:
        raise auth_http_error(exc) from exc


@router.post("/login", response_model=Token)
def login(
    user_data: UserLogin,
    request: Request,
    response: Response,
    services: AuthServices = Depends(get_services),
):
    """Login and get tokens."""
    device = DeviceInfo(
        user_agent=request.headers.get("user-agent"),
        ip_address=get_request_ip(request),
    )
    try:
        pair = services.tokens.login(user_data.username, user_data.password, device)
    except AuthError as exc:
        raise auth_http_error(exc) from exc
    return token_response(response, services, pair)


@router.post("/refresh", response_model=Token)
def refresh_tokens(
    request: Request,
    response: Response,
    payload: TokenRefresh | None = None,
    services: AuthServices = Depends(get_services),
):
    """Rotate the refresh token and issue a new access token."""
    refresh_token = get_presented_refresh_token(request, services, payload)
    try:
        pair = services.tokens.refresh(refresh_token)
    except AuthError as exc:
        clear_refresh_cookie(response, services)
        http_error = auth_http_error(exc)
        # HTTPException replaces the response, so carry the cookie deletion over.
        http_error.headers = {**(http_error.headers or {}), "set-cookie": response.headers["set-cookie"]}
        raise http_error from exc
    return token_response(response, services, pair)


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    payload: TokenRefresh | None = None,
    services: AuthServices = Depends(get_services),
):
    """Revoke the presented session. Always succeeds."""
    services.tokens.logout(get_presented_refresh_token(request, services, payload))
    clear_refresh_cookie(response, services)
    return MessageResponse(message="Successfully logged out")


@router.post("/logout-all", response_model=MessageResponse)
def logout_all(
    response: Response,
    claims: TokenClaims = Depends(get_current_claims),
    services: AuthServices = Depends(get_services),
):
    """Revoke every session of the current user."""
    count = services.tokens.revoke_all(claims.subject_id, reason="logout_all")
    clear_refresh_cookie(response, services)
    return MessageResponse(message=f"Revoked {count} session(s)")


@router.get("/sessions", response_model=list[SessionResponse])
def list_sessions(
    claims: TokenClaims = Depends(get_current_claims),
    services: AuthServices = Depends(get_services),
):
    """List the current user's active sessions."""
    return services.tokens.list_sessions(claims.subject_id)


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
def revoke_session(
    session_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    services: AuthServices = Depends(get_services),
):
    """Revoke one of the current user's sessions."""
    try:
        services.tokens.revoke_session(claims.subject_id, session_id)
    except AuthError as exc:
        raise auth_http_error(exc) from exc
    return MessageResponse(message="Session revoked")


@router.get("/me", response_model=UserResponse)
def me(
    claims: TokenClaims = Depends(get_current_claims),
    services: AuthServices = Depends(get_services),
):
    credential = services.credentials.find_by_id(claims.subject_id)
    if credential is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials")
    return credential


@router.post("/verify-email", response_model=UserResponse)
def verify_email(payload: VerifyEmail, services: AuthServices = Depends(get_services)):
    """Redeem an email-verification token."""
    try:
        return services.accounts.verify_email(payload.token, payload.password)
    except AuthError as exc:
        raise auth_http_error(exc) from exc


@router.post("/resend-verification", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
def resend_verification(payload: EmailRequest, services: AuthServices = Depends(get_services)):
    try:
        services.accounts.resend_verification(payload.email)
    except AuthError as exc:
        raise auth_http_error(exc) from exc
    return MessageResponse(message="If the account exists and is unverified, an email has been sent")


@router.post("/forgot-password", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
def forgot_password(payload: EmailRequest, services: AuthServices = Depends(get_services)):
    try:
        services.accounts.request_password_reset(payload.email)
    except AuthError as exc:
        raise auth_http_error(exc) from exc
    return MessageResponse(message="If the account exists, password reset instructions have been sent")


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(payload: ResetPassword, services: AuthServices = Depends(get_services)):
    """Set a new password; all sessions are signed out."""
    try:
        services.accounts.reset_password(payload.token, payload.new_password)
    except AuthError as exc:
        raise auth_http_error(exc) from exc
    return MessageResponse(message="Password has been reset. Please log in again.")


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePassword,
    response: Response,
    claims: TokenClaims = Depends(get_current_claims),
    services: AuthServices = Depends(get_services),
):
    """Change password; all sessions are signed out."""
    try:
        services.accounts.change_password(claims.subject_id, payload.current_password, payload.new_password)
    except AuthError as exc:
        raise auth_http_error(exc) from exc
    clear_refresh_cookie(response, services)
    return MessageResponse(message="Password changed. Please log in again.")
