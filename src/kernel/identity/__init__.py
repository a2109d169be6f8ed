"""
Identity Core - credentials, tokens and password reset.
"""

from src.kernel.identity.password import PasswordHasher, verify_password, hash_password
from src.kernel.identity.jwt import AccessTokenClaims, TokenIssuer
from src.kernel.identity.directory import PrincipalDirectory
from src.kernel.identity.refresh_tokens import RefreshTokenLedger
from src.kernel.identity.sessions import SessionTokens, open_session
from src.kernel.identity.reset_codes import (
    ResetCodeFlow,
    ResetOutcome,
    ResetResult,
    generate_reset_code,
)
from src.kernel.identity.identity_service import IdentityService, build_identity_service

__all__ = [
    "PasswordHasher",
    "verify_password",
    "hash_password",
    "AccessTokenClaims",
    "TokenIssuer",
    "PrincipalDirectory",
    "RefreshTokenLedger",
    "SessionTokens",
    "open_session",
    "ResetCodeFlow",
    "ResetOutcome",
    "ResetResult",
    "generate_reset_code",
    "IdentityService",
    "build_identity_service",
]
