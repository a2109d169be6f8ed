"""
Pydantic schemas for API request/response validation.
"""

from src.schemas.auth import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    PrincipalResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordResponse,
    ValidateCodeRequest,
    ValidateCodeResponse,
    VerifyResetCodeRequest,
)
from src.schemas.common import (
    ErrorResponse,
    HealthResponse,
    SuccessResponse,
)

__all__ = [
    # Auth
    "AuthResponse",
    "ForgotPasswordRequest",
    "LoginRequest",
    "PrincipalResponse",
    "RefreshTokenRequest",
    "RegisterRequest",
    "ResetPasswordResponse",
    "ValidateCodeRequest",
    "ValidateCodeResponse",
    "VerifyResetCodeRequest",
    # Common
    "ErrorResponse",
    "HealthResponse",
    "SuccessResponse",
]
