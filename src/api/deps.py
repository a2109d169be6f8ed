"""
FastAPI dependencies for authentication and authorization.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.kernel.identity.identity_service import IdentityService
from src.kernel.identity.jwt import AccessTokenClaims


# Security scheme
security = HTTPBearer(auto_error=False)


def get_identity_service(request: Request) -> IdentityService:
    """The service wired at startup (see ``src.main.lifespan``)."""
    return request.app.state.identity_service


Identity = Annotated[IdentityService, Depends(get_identity_service)]


async def get_current_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    identity: Identity,
) -> AccessTokenClaims:
    """Verified access token claims, or 401."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = identity.issuer.decode_access_token(credentials.credentials)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return claims


CurrentPrincipal = Annotated[AccessTokenClaims, Depends(get_current_principal)]


def get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RoleChecker:
    """
    Dependency requiring a role claim on the access token.

    Usage:
        @router.get("/admin-only")
        async def admin_only(principal: Annotated[AccessTokenClaims, Depends(RoleChecker("Admin"))]):
            ...
    """

    def __init__(self, role: str):
        self.role = role

    async def __call__(self, principal: CurrentPrincipal) -> AccessTokenClaims:
        if self.role not in principal.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{self.role} role required",
            )
        return principal
