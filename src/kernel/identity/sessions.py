"""
Session token bundle returned by login, registration, refresh and reset.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.kernel.identity.jwt import TokenIssuer
from src.kernel.identity.refresh_tokens import RefreshTokenLedger
from src.kernel.models.refresh_token import RefreshToken
from src.kernel.models.user import User


class SessionTokens(BaseModel):
    """Access and refresh token pair plus the principal they were issued to."""

    access_token: str
    access_token_expires_at: datetime
    refresh_token: str
    refresh_token_expires_at: datetime
    user_id: uuid.UUID
    username: str
    email: str
    roles: list[str]

    @classmethod
    def build(
        cls,
        user: User,
        access_token: str,
        access_token_expires_at: datetime,
        refresh_token: RefreshToken,
    ) -> "SessionTokens":
        return cls(
            access_token=access_token,
            access_token_expires_at=access_token_expires_at,
            refresh_token=refresh_token.token,
            refresh_token_expires_at=refresh_token.expires_at,
            user_id=user.id,
            username=user.username,
            email=user.email,
            roles=user.role_names,
        )


async def open_session(
    issuer: TokenIssuer,
    ledger: RefreshTokenLedger,
    user: User,
    client_ip: Optional[str] = None,
    session: Optional[AsyncSession] = None,
) -> SessionTokens:
    """Issue an access token and persist a fresh refresh token for ``user``."""
    access_token, access_expires = issuer.issue_access_token(user)
    refresh_token = await ledger.create(user.id, client_ip, session=session)
    return SessionTokens.build(user, access_token, access_expires, refresh_token)
