"""
Refresh token ledger.

Owns the refresh_tokens rows: create, lookup, rotate, revoke, revoke-all
and purge. Every state transition is a compare-and-set UPDATE guarded on
the token still being active, so of two concurrent callers exactly one
observes the row as active and wins.

State per token::

    Active --rotate--> Revoked (with successor)
    Active --revoke--> Revoked (no successor)
    Active --expiry--> Expired (derived, no row change)
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import AuthConfig
from src.database import unit_of_work
from src.kernel.errors import TokenRejected
from src.kernel.identity.directory import PrincipalDirectory
from src.kernel.identity.jwt import TokenIssuer
from src.kernel.models.base import utcnow
from src.kernel.models.refresh_token import RefreshToken
from src.kernel.models.user import User
from src.logging_config import get_logger

logger = get_logger(__name__)

refresh_tokens = RefreshToken.__table__


def _active(now: datetime):
    return (
        refresh_tokens.c.revoked_at.is_(None),
        refresh_tokens.c.expires_at > now,
    )


class RefreshTokenLedger:
    """Persistence-backed lifecycle of refresh tokens."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        issuer: TokenIssuer,
        directory: PrincipalDirectory,
        config: AuthConfig,
    ):
        self.session_factory = session_factory
        self.issuer = issuer
        self.directory = directory
        self.retention = timedelta(days=config.token_retention_days)

    async def create(
        self,
        user_id: uuid.UUID,
        client_ip: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> RefreshToken:
        """Persist a new active token for a principal."""
        value, expires_at = self.issuer.issue_refresh_token_value()
        async with unit_of_work(self.session_factory, session, actor=client_ip) as s:
            token = RefreshToken(
                user_id=user_id,
                token=value,
                expires_at=expires_at,
                created_by_ip=client_ip,
            )
            s.add(token)
            await s.flush()
            return token

    async def lookup(
        self,
        value: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[RefreshToken]:
        """Find a token by exact value, whatever its state."""
        async with unit_of_work(self.session_factory, session) as s:
            result = await s.execute(
                select(RefreshToken)
                .where(RefreshToken.token == value)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def rotate(
        self,
        value: str,
        client_ip: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> tuple[User, RefreshToken]:
        """
        Exchange an active token for a successor.

        In one transaction: revoke the presented token, persist a new one
        for the same principal and link the old row to it.

        Raises:
            TokenRejected: If the token is unknown, expired, revoked or
                already rotated. Callers must not reveal which.
        """
        now = utcnow()
        async with unit_of_work(self.session_factory, session, actor=client_ip) as s:
            result = await s.execute(
                update(refresh_tokens)
                .where(refresh_tokens.c.token == value, *_active(now))
                .values(revoked_at=now, revoked_by_ip=client_ip)
            )
            if result.rowcount != 1:
                await self._log_rejected_rotation(value, s)
                raise TokenRejected()

            old = await self.lookup(value, session=s)
            user = await self.directory.get_by_id(old.user_id, session=s)
            if user is None:
                raise TokenRejected()

            successor = await self.create(old.user_id, client_ip, session=s)
            await s.execute(
                update(refresh_tokens)
                .where(refresh_tokens.c.id == old.id)
                .values(replaced_by_token=successor.token)
            )

        logger.info("Refresh token rotated", extra={"user_id": str(user.id)})
        return user, successor

    async def revoke(
        self,
        value: str,
        client_ip: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Revoke one token.

        Already inactive tokens are left alone and still count as found.
        When ``user_id`` is given, tokens owned by anyone else are treated
        as not found.

        Returns:
            False if no such token exists, True otherwise
        """
        now = utcnow()
        owner = (refresh_tokens.c.user_id == user_id,) if user_id is not None else ()
        async with unit_of_work(self.session_factory, session, actor=client_ip) as s:
            result = await s.execute(
                update(refresh_tokens)
                .where(refresh_tokens.c.token == value, *owner, *_active(now))
                .values(revoked_at=now, revoked_by_ip=client_ip)
            )
            if result.rowcount == 1:
                return True

            existing = await s.execute(
                select(refresh_tokens.c.id).where(refresh_tokens.c.token == value, *owner)
            )
            return existing.first() is not None

    async def revoke_all(
        self,
        user_id: uuid.UUID,
        client_ip: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Revoke every active token of a principal. Returns how many were revoked."""
        now = utcnow()
        async with unit_of_work(self.session_factory, session, actor=client_ip) as s:
            result = await s.execute(
                update(refresh_tokens)
                .where(refresh_tokens.c.user_id == user_id, *_active(now))
                .values(revoked_at=now, revoked_by_ip=client_ip)
            )
            count = result.rowcount

        logger.info("Revoked all refresh tokens", extra={"user_id": str(user_id), "count": count})
        return count

    async def purge_expired(
        self,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """
        Delete tokens revoked or expired for longer than the retention window.

        Tokens still inside the window are kept for audit.
        """
        cutoff = (now or utcnow()) - self.retention
        async with unit_of_work(self.session_factory, session) as s:
            result = await s.execute(
                delete(refresh_tokens).where(
                    or_(
                        refresh_tokens.c.revoked_at < cutoff,
                        refresh_tokens.c.expires_at < cutoff,
                    )
                )
            )
            count = result.rowcount

        logger.info("Purged refresh tokens", extra={"count": count})
        return count

    async def _log_rejected_rotation(self, value: str, session: AsyncSession) -> None:
        token = await self.lookup(value, session=session)
        if token is None:
            logger.warning("Refresh rejected: unknown token")
        elif token.is_revoked():
            # Replay of a revoked token may mean the token was stolen
            logger.warning(
                "Refresh rejected: token already revoked (possible reuse)",
                extra={
                    "user_id": str(token.user_id),
                    "token_id": str(token.id),
                    "rotated": token.replaced_by_token is not None,
                },
            )
        else:
            logger.warning(
                "Refresh rejected: token expired",
                extra={"user_id": str(token.user_id), "token_id": str(token.id)},
            )
