"""
Authentication endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.api.deps import CurrentPrincipal, Identity, RoleChecker, get_client_ip
from src.config import get_settings
from src.kernel.identity.jwt import AccessTokenClaims
from src.kernel.identity.reset_codes import ResetOutcome
from src.kernel.identity.sessions import SessionTokens
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
from src.schemas.common import SuccessResponse

router = APIRouter()

AdminPrincipal = Annotated[AccessTokenClaims, Depends(RoleChecker(get_settings().admin_role))]


def _auth_response(tokens: SessionTokens) -> AuthResponse:
    return AuthResponse.model_validate(tokens.model_dump())


@router.post("/login", response_model=AuthResponse)
async def login(
    request: Request,
    data: LoginRequest,
    identity: Identity,
):
    """
    Authenticate user and return tokens.
    """
    tokens = await identity.login(
        email=data.email,
        password=data.password,
        client_ip=get_client_ip(request),
    )
    return _auth_response(tokens)


@router.post("/register", response_model=AuthResponse)
async def register(
    request: Request,
    data: RegisterRequest,
    identity: Identity,
):
    """
    Register a new user account.

    Returns access and refresh tokens on successful registration.
    """
    tokens = await identity.register(
        username=data.username,
        email=data.email,
        password=data.password,
        first_name=data.first_name,
        last_name=data.last_name,
        client_ip=get_client_ip(request),
    )
    return _auth_response(tokens)


@router.post("/refresh-token", response_model=AuthResponse)
async def refresh_token(
    request: Request,
    data: RefreshTokenRequest,
    identity: Identity,
):
    """
    Refresh access token using refresh token.

    Implements refresh token rotation - old refresh token is invalidated.
    """
    tokens = await identity.refresh(data.refresh_token, client_ip=get_client_ip(request))
    return _auth_response(tokens)


@router.post("/revoke-token", response_model=SuccessResponse)
async def revoke_token(
    request: Request,
    data: RefreshTokenRequest,
    principal: CurrentPrincipal,
    identity: Identity,
):
    """Revoke one of the caller's refresh tokens."""
    found = await identity.revoke_token(
        data.refresh_token,
        user_id=principal.user_id,
        client_ip=get_client_ip(request),
    )
    if not found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Token not found",
        )
    return SuccessResponse(message="Token revoked successfully")


@router.post("/revoke-all-tokens", response_model=SuccessResponse)
async def revoke_all_tokens(
    request: Request,
    principal: CurrentPrincipal,
    identity: Identity,
):
    """Log out everywhere by revoking every active refresh token of the caller."""
    count = await identity.revoke_all_tokens(principal.user_id, client_ip=get_client_ip(request))
    return SuccessResponse(message="All tokens revoked successfully", data={"revoked": count})


@router.post("/forgot-password", response_model=SuccessResponse)
async def forgot_password(data: ForgotPasswordRequest, identity: Identity):
    """
    Send a password reset code.

    The response is identical whether or not the email is registered.
    """
    await identity.forgot_password(data.email)
    return SuccessResponse(message="If the email exists, a reset code has been sent.")


@router.post("/validate-code", response_model=ValidateCodeResponse)
async def validate_code(data: ValidateCodeRequest, identity: Identity):
    """Check a reset code without using it up."""
    if await identity.validate_code(data.email, data.code):
        return ValidateCodeResponse(success=True, message="Code is valid.")
    return ValidateCodeResponse(success=False, message="Invalid or expired reset code.")


@router.post("/verify-reset-code", response_model=ResetPasswordResponse)
async def verify_reset_code(
    request: Request,
    data: VerifyResetCodeRequest,
    identity: Identity,
):
    """
    Redeem a reset code.

    With a new password the password is changed. Without one the caller is
    signed in again and receives fresh tokens.
    """
    result = await identity.verify_reset_code(
        data.email,
        data.code,
        new_password=data.new_password,
        client_ip=get_client_ip(request),
    )
    session_tokens = None
    if result.outcome is ResetOutcome.SESSION_RESUMED:
        session_tokens = _auth_response(result.session)
    return ResetPasswordResponse(
        success=True,
        message=result.message,
        session_tokens=session_tokens,
    )


@router.get("/me", response_model=PrincipalResponse)
async def get_current_principal_profile(principal: CurrentPrincipal):
    """Principal carried by the presented access token."""
    return PrincipalResponse(
        user_id=principal.user_id,
        username=principal.username,
        email=principal.email,
        roles=principal.roles,
    )


@router.get("/admin-only", response_model=SuccessResponse)
async def admin_only(principal: AdminPrincipal):
    """Reachable only with the admin role claim."""
    return SuccessResponse(message=f"Hello {principal.username}, you have admin access.")
