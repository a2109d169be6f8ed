"""
Identity service for credential and session operations.
"""

import asyncio
import uuid
from typing import Awaitable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import AuthConfig
from src.database import unit_of_work
from src.kernel.errors import (
    CodeRejected,
    DuplicateAccount,
    InvalidCredentials,
    RegistrationUnavailable,
    UpstreamUnavailable,
)
from src.kernel.identity.directory import PrincipalDirectory
from src.kernel.identity.jwt import TokenIssuer
from src.kernel.identity.password import DUMMY_HASH, hash_password, verify_password
from src.kernel.identity.refresh_tokens import RefreshTokenLedger
from src.kernel.identity.reset_codes import ResetCodeFlow, ResetResult
from src.kernel.identity.sessions import SessionTokens, open_session
from src.kernel.notifications import Notifier
from src.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class IdentityService:
    """
    Service for user identity operations.

    Handles login, registration, token refresh and revocation, and the
    password reset flow. Each operation runs in its own unit of work and
    is bounded by the configured operation timeout.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        directory: PrincipalDirectory,
        issuer: TokenIssuer,
        ledger: RefreshTokenLedger,
        reset_flow: ResetCodeFlow,
        config: AuthConfig,
    ):
        self.session_factory = session_factory
        self.directory = directory
        self.issuer = issuer
        self.ledger = ledger
        self.reset_flow = reset_flow
        self.config = config

    async def _bounded(self, operation: Awaitable[T]) -> T:
        timeout = self.config.operation_timeout_seconds
        if not timeout:
            return await operation
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Identity operation timed out", extra={"timeout": timeout})
            raise UpstreamUnavailable("Operation timed out") from exc

    async def login(
        self,
        email: str,
        password: str,
        client_ip: Optional[str] = None,
    ) -> SessionTokens:
        """
        Authenticate a user and open a session.

        Raises:
            InvalidCredentials: If the email is unknown or the password is
                wrong. The two cases are indistinguishable.
        """
        return await self._bounded(self._login(email, password, client_ip))

    async def _login(self, email: str, password: str, client_ip: Optional[str]) -> SessionTokens:
        async with unit_of_work(self.session_factory, actor=client_ip) as s:
            user = await self.directory.get_by_email(email, session=s)
            if user is None:
                # Burn the same bcrypt cost as a real check
                verify_password(password, DUMMY_HASH)
                logger.warning("Login failed", extra={"client_ip": client_ip})
                raise InvalidCredentials()

            if not verify_password(password, user.password_hash):
                logger.warning(
                    "Login failed",
                    extra={"user_id": str(user.id), "client_ip": client_ip},
                )
                raise InvalidCredentials()

            tokens = await open_session(self.issuer, self.ledger, user, client_ip, session=s)

        logger.info("User logged in", extra={"user_id": str(user.id)})
        return tokens

    async def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        client_ip: Optional[str] = None,
    ) -> SessionTokens:
        """
        Register a new user with the default role and open a session.

        Raises:
            DuplicateAccount: If the email is already registered
            RegistrationUnavailable: If the default role does not exist
        """
        return await self._bounded(
            self._register(username, email, password, first_name, last_name, client_ip)
        )

    async def _register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        client_ip: Optional[str],
    ) -> SessionTokens:
        password_hash = hash_password(password)

        async with unit_of_work(self.session_factory, actor=client_ip) as s:
            if await self.directory.email_exists(email, session=s):
                logger.warning("Registration rejected: email already registered")
                raise DuplicateAccount()

            role = await self.directory.get_role(self.config.default_role, session=s)
            if role is None:
                logger.error(
                    "Registration rejected: default role missing",
                    extra={"role": self.config.default_role},
                )
                raise RegistrationUnavailable()

            user = await self.directory.create_user(
                username=username,
                email=email,
                password_hash=password_hash,
                roles=[role],
                first_name=first_name,
                last_name=last_name,
                session=s,
            )
            tokens = await open_session(self.issuer, self.ledger, user, client_ip, session=s)

        logger.info("User registered", extra={"user_id": str(user.id)})
        return tokens

    async def refresh(self, refresh_token: str, client_ip: Optional[str] = None) -> SessionTokens:
        """
        Rotate a refresh token and issue a new access token.

        Raises:
            TokenRejected: If the token is unknown, expired or already used
        """
        return await self._bounded(self._refresh(refresh_token, client_ip))

    async def _refresh(self, refresh_token: str, client_ip: Optional[str]) -> SessionTokens:
        user, successor = await self.ledger.rotate(refresh_token, client_ip)
        access_token, access_expires = self.issuer.issue_access_token(user)
        return SessionTokens.build(user, access_token, access_expires, successor)

    async def revoke_token(
        self,
        refresh_token: str,
        user_id: uuid.UUID,
        client_ip: Optional[str] = None,
    ) -> bool:
        """Revoke one of the caller's refresh tokens. False if the caller owns no such token."""
        return await self._bounded(
            self.ledger.revoke(refresh_token, client_ip, user_id=user_id)
        )

    async def revoke_all_tokens(self, user_id: uuid.UUID, client_ip: Optional[str] = None) -> int:
        """Log a user out everywhere."""
        return await self._bounded(self.ledger.revoke_all(user_id, client_ip))

    async def forgot_password(self, email: str) -> None:
        """Issue a reset code if the email is known. Never reveals whether it is."""
        try:
            await self._bounded(self.reset_flow.request_code(email))
        except UpstreamUnavailable:
            # The acknowledgement goes out regardless; the failure is only logged
            logger.error("Reset code request did not complete", exc_info=True)

    async def validate_code(self, email: str, code: str) -> bool:
        """Check a reset code without consuming it."""
        try:
            await self._bounded(self.reset_flow.validate(email, code))
        except CodeRejected:
            return False
        return True

    async def verify_reset_code(
        self,
        email: str,
        code: str,
        new_password: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> ResetResult:
        """
        Redeem a reset code, changing the password or resuming the session.

        Raises:
            CodeRejected: If the code is not redeemable
        """
        return await self._bounded(
            self.reset_flow.consume(email, code, new_password, client_ip)
        )


def build_identity_service(
    config: AuthConfig,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
) -> IdentityService:
    """Wire the credential core around one session factory and notifier."""
    issuer = TokenIssuer(config)
    directory = PrincipalDirectory(session_factory)
    ledger = RefreshTokenLedger(session_factory, issuer, directory, config)
    reset_flow = ResetCodeFlow(session_factory, directory, ledger, issuer, notifier, config)
    return IdentityService(session_factory, directory, issuer, ledger, reset_flow, config)
