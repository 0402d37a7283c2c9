"""Authentication schemas."""
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from authcore.security import MAX_PASSWORD_BYTES, password_fits_bcrypt


def check_password_bytes(value: str | None) -> str | None:
    """Field limits count characters; bcrypt limits UTF-8 bytes."""
    if value is not None and not password_fits_bcrypt(value):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


class UserRegister(BaseModel):
    """User registration request."""

    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    display_name: str | None = Field(None, max_length=100)

    validate_password_bytes = field_validator("password")(check_password_bytes)


class UserLogin(BaseModel):
    """User login request."""

    username: str  # Can be username or email
    password: str


class Token(BaseModel):
    """Token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenRefresh(BaseModel):
    """Token refresh request; web clients send the cookie instead."""

    refresh_token: str | None = None


class UserResponse(BaseModel):
    """User info response."""

    id: str
    username: str
    email: str
    role: str
    display_name: str | None = None
    is_email_verified: bool

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    """Active session as listed to its owner."""

    id: str
    created_at: datetime
    expires_at: datetime
    last_used_at: datetime | None = None
    user_agent: str | None = None
    ip_address: str | None = None

    class Config:
        from_attributes = True


class EmailRequest(BaseModel):
    email: EmailStr


class VerifyEmail(BaseModel):
    token: str
    password: str | None = Field(None, min_length=8, max_length=72)

    validate_password_bytes = field_validator("password")(check_password_bytes)


class ResetPassword(BaseModel):
    token: str
    new_password: str = Field(..., min_length=8, max_length=72)

    validate_password_bytes = field_validator("new_password")(check_password_bytes)


class ChangePassword(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=72)

    validate_password_bytes = field_validator("new_password")(check_password_bytes)


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
