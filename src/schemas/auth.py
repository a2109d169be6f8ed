"""
Authentication schemas.

Field names are snake_case in Python and camelCase on the wire.
"""

import re
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


def validate_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not any(c.isupper() for c in v):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in v):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit")
    if not re.search(r"[^a-zA-Z0-9]", v):
        raise ValueError("Password must contain at least one special character")
    return v


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(CamelModel):
    """User login request."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RegisterRequest(CamelModel):
    """User registration request."""

    username: str = Field(..., min_length=1, max_length=100)
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


class RefreshTokenRequest(CamelModel):
    """Token refresh or revocation request."""

    refresh_token: str = Field(..., min_length=1)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ValidateCodeRequest(CamelModel):
    email: EmailStr
    code: str = Field(..., pattern=r"^[0-9]{6}$")


class VerifyResetCodeRequest(CamelModel):
    """
    Redeem a reset code.

    With ``new_password`` the password is replaced; without it the user is
    signed in again with fresh tokens.
    """

    email: EmailStr
    code: str = Field(..., pattern=r"^[0-9]{6}$")
    new_password: Optional[str] = Field(None, max_length=128)

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        return validate_password_strength(v)


class AuthResponse(CamelModel):
    """Session tokens plus the principal they were issued to."""

    access_token: str
    access_token_expires_at: datetime
    refresh_token: str
    refresh_token_expires_at: datetime
    user_id: uuid.UUID
    username: str
    email: str
    roles: list[str] = Field(default_factory=list)


class ValidateCodeResponse(CamelModel):
    success: bool
    message: str


class ResetPasswordResponse(CamelModel):
    success: bool
    message: str
    session_tokens: Optional[AuthResponse] = None


class PrincipalResponse(CamelModel):
    """Principal as asserted by a verified access token."""

    user_id: uuid.UUID
    username: str
    email: str
    roles: list[str] = Field(default_factory=list)
