"""
One-time password reset codes.

A principal holds at most one redeemable code: issuing a new one marks
every unused code of that principal as used in the same transaction.
Consuming is a conditional UPDATE guarded on ``is_used`` and expiry, so
of two concurrent submissions of the same code exactly one wins.
"""

import asyncio
import enum
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import AuthConfig
from src.database import unit_of_work
from src.kernel.errors import CodeRejected, UpstreamUnavailable
from src.kernel.identity.directory import PrincipalDirectory
from src.kernel.identity.jwt import TokenIssuer
from src.kernel.identity.password import hash_password
from src.kernel.identity.refresh_tokens import RefreshTokenLedger
from src.kernel.identity.sessions import SessionTokens, open_session
from src.kernel.models.base import utcnow
from src.kernel.models.reset_code import PasswordResetCode
from src.kernel.models.user import User
from src.kernel.notifications import Notifier
from src.logging_config import get_logger

logger = get_logger(__name__)

reset_codes = PasswordResetCode.__table__

RESET_CODE_DIGITS = 6


def generate_reset_code() -> str:
    """Six decimal digits from the OS CSPRNG, never with a leading zero."""
    low = 10 ** (RESET_CODE_DIGITS - 1)
    return str(low + secrets.randbelow(9 * low))


class ResetOutcome(str, enum.Enum):
    PASSWORD_CHANGED = "password_changed"
    SESSION_RESUMED = "session_resumed"


@dataclass
class ResetResult:
    """Outcome of consuming a reset code. ``session`` is set only on resume."""

    outcome: ResetOutcome
    message: str
    session: Optional[SessionTokens] = None


class ResetCodeFlow:
    """Issue, validate and consume password reset codes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        directory: PrincipalDirectory,
        ledger: RefreshTokenLedger,
        issuer: TokenIssuer,
        notifier: Notifier,
        config: AuthConfig,
    ):
        self.session_factory = session_factory
        self.directory = directory
        self.ledger = ledger
        self.issuer = issuer
        self.notifier = notifier
        self.config = config
        self.code_ttl = timedelta(minutes=config.reset_code_expire_minutes)
        self.retention = timedelta(days=config.token_retention_days)

    async def request_code(self, email: str, session: Optional[AsyncSession] = None) -> None:
        """
        Issue a fresh code and hand it to the notifier.

        Returns the same way whether or not the email is known. Notifier
        failures are logged and swallowed; the code stays persisted.
        """
        async with unit_of_work(self.session_factory, session) as s:
            # Row lock serializes concurrent requests for one principal
            user = await self.directory.get_by_email(email, session=s, for_update=True)
            if user is None:
                logger.info("Reset code requested for unknown email")
                return

            await s.execute(
                update(reset_codes)
                .where(reset_codes.c.user_id == user.id, reset_codes.c.is_used.is_(False))
                .values(is_used=True)
            )
            reset_code = PasswordResetCode(
                user_id=user.id,
                code=generate_reset_code(),
                expires_at=utcnow() + self.code_ttl,
                is_used=False,
            )
            s.add(reset_code)
            await s.flush()
            to_email, username, code = user.email, user.username, reset_code.code

        logger.info("Reset code issued", extra={"user_id": str(user.id)})

        delivery = self.notifier.send_password_reset_code(
            to_email=to_email,
            code=code,
            username=username,
            expires_minutes=self.config.reset_code_expire_minutes,
        )
        try:
            if self.config.notifier_timeout_seconds:
                await asyncio.wait_for(delivery, timeout=self.config.notifier_timeout_seconds)
            else:
                await delivery
        except (UpstreamUnavailable, asyncio.TimeoutError):
            logger.error(
                "Reset code delivery failed",
                extra={"user_id": str(user.id)},
                exc_info=True,
            )
        except Exception:
            logger.exception(
                "Notifier raised unexpectedly",
                extra={"user_id": str(user.id)},
            )

    async def validate(
        self,
        email: str,
        code: str,
        session: Optional[AsyncSession] = None,
    ) -> PasswordResetCode:
        """
        Check that ``code`` is redeemable for ``email`` without consuming it.

        Raises:
            CodeRejected: If the code is unknown, used, expired or belongs
                to another principal
        """
        async with unit_of_work(self.session_factory, session) as s:
            _, reset_code = await self._find_redeemable(email, code, s)
            return reset_code

    async def consume(
        self,
        email: str,
        code: str,
        new_password: Optional[str] = None,
        client_ip: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> ResetResult:
        """
        Redeem a code.

        With ``new_password`` the stored hash is replaced and no session is
        issued. Without it the principal is signed in again with a fresh
        access and refresh token. The code is spent either way.

        Raises:
            CodeRejected: If the code is not redeemable or another caller
                consumed it first
        """
        async with unit_of_work(self.session_factory, session, actor=client_ip) as s:
            user, reset_code = await self._find_redeemable(email, code, s)

            result = await s.execute(
                update(reset_codes)
                .where(
                    reset_codes.c.id == reset_code.id,
                    reset_codes.c.is_used.is_(False),
                    reset_codes.c.expires_at > utcnow(),
                )
                .values(is_used=True)
            )
            if result.rowcount != 1:
                logger.warning("Reset code rejected: already consumed", extra={"user_id": str(user.id)})
                raise CodeRejected()

            if new_password:
                await self.directory.update_password_hash(
                    user.id, hash_password(new_password), session=s
                )
                if self.config.revoke_sessions_on_password_reset:
                    await self.ledger.revoke_all(user.id, client_ip, session=s)
                logger.info("Password reset", extra={"user_id": str(user.id)})
                return ResetResult(
                    outcome=ResetOutcome.PASSWORD_CHANGED,
                    message="Password has been reset successfully.",
                )

            tokens = await open_session(self.issuer, self.ledger, user, client_ip, session=s)

        logger.info("Session resumed with reset code", extra={"user_id": str(user.id)})
        return ResetResult(
            outcome=ResetOutcome.SESSION_RESUMED,
            message="Session continued successfully.",
            session=tokens,
        )

    async def purge_expired(
        self,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """
        Delete codes whose expiry lies before the retention window.

        Used codes age out on the same clock as unused ones.
        """
        cutoff = (now or utcnow()) - self.retention
        async with unit_of_work(self.session_factory, session) as s:
            result = await s.execute(
                delete(reset_codes).where(reset_codes.c.expires_at < cutoff)
            )
            count = result.rowcount

        logger.info("Purged reset codes", extra={"count": count})
        return count

    async def _find_redeemable(
        self,
        email: str,
        code: str,
        session: AsyncSession,
    ) -> tuple[User, PasswordResetCode]:
        user = await self.directory.get_by_email(email, session=session)
        if user is None:
            logger.warning("Reset code rejected: unknown email")
            raise CodeRejected()

        result = await session.execute(
            select(PasswordResetCode)
            .where(
                PasswordResetCode.user_id == user.id,
                PasswordResetCode.code == code,
                PasswordResetCode.is_used.is_(False),
                PasswordResetCode.expires_at > utcnow(),
            )
            .order_by(PasswordResetCode.expires_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        reset_code = result.scalar_one_or_none()
        if reset_code is None:
            logger.warning("Reset code rejected", extra={"user_id": str(user.id)})
            raise CodeRejected()
        return user, reset_code
