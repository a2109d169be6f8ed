"""Unit tests for IdentityService orchestration."""

import asyncio
from dataclasses import replace

import pytest
from sqlalchemy import delete

from src.kernel.errors import (
    CodeRejected,
    DuplicateAccount,
    InvalidCredentials,
    RegistrationUnavailable,
    TokenRejected,
    UpstreamUnavailable,
)
from src.kernel.identity.identity_service import IdentityService
from src.kernel.identity.reset_codes import ResetOutcome
from src.kernel.models.user import Role, User

class TestLogin:

    @pytest.mark.asyncio
    async def test_login_claims_match_principal(self, identity: IdentityService, test_admin: User, user_password: str):
        tokens = await identity.login("admin@example.com", user_password, client_ip="10.1.1.1")

        claims = identity.issuer.decode_access_token(tokens.access_token)
        assert claims.user_id == test_admin.id == tokens.user_id
        assert claims.username == "admin" == tokens.username
        assert claims.email == "admin@example.com" == tokens.email
        assert claims.roles == ["Admin", "User"] == tokens.roles
        refresh = await identity.ledger.lookup(tokens.refresh_token)
        assert refresh.user_id == test_admin.id
        assert refresh.created_by_ip == "10.1.1.1"
        assert refresh.expires_at == tokens.refresh_token_expires_at

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, identity: IdentityService, test_user: User, user_password: str):
        tokens = await identity.login("  TestUser@Example.COM ", user_password)

        assert tokens.user_id == test_user.id

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_email_look_alike(
        self,
        identity: IdentityService,
        test_user: User,
        user_password: str,
    ):
        with pytest.raises(InvalidCredentials) as wrong_password:
            await identity.login(test_user.email, "WrongPassword1!")
        with pytest.raises(InvalidCredentials) as unknown_email:
            await identity.login("nobody@example.com", user_password)

        assert wrong_password.value.message == unknown_email.value.message

class TestRegister:

    @pytest.mark.asyncio
    async def test_register_grants_default_role(self, identity: IdentityService):
        tokens = await identity.register(
            username="bob",
            email="Bob@Example.com",
            password="SecurePass123!",
            first_name="Bob",
            last_name="Builder",
        )

        assert tokens.email == "bob@example.com"
        assert tokens.roles == ["User"]
        user = await identity.directory.get_by_id(tokens.user_id)
        assert user.first_name == "Bob"
        # Registration and login agree on the credential
        again = await identity.login("bob@example.com", "SecurePass123!")
        assert again.user_id == tokens.user_id

    @pytest.mark.asyncio
    async def test_duplicate_email(self, identity: IdentityService, test_user: User):
        with pytest.raises(DuplicateAccount):
            await identity.register(
                username="copy",
                email="TESTUSER@example.com",
                password="SecurePass123!",
            )

    @pytest.mark.asyncio
    async def test_missing_default_role(self, identity: IdentityService, session_factory):
        async with session_factory() as session:
            async with session.begin():
                await session.execute(delete(Role.__table__).where(Role.__table__.c.name == "User"))

        with pytest.raises(RegistrationUnavailable):
            await identity.register(username="bob", email="bob@example.com", password="SecurePass123!")
        assert not await identity.directory.email_exists("bob@example.com")

class TestRefreshAndRevoke:

    @pytest.mark.asyncio
    async def test_refresh_rotates(self, identity: IdentityService, test_user: User, user_password: str):
        first = await identity.login(test_user.email, user_password)

        second = await identity.refresh(first.refresh_token)

        assert second.refresh_token != first.refresh_token
        assert identity.issuer.decode_access_token(second.access_token).user_id == test_user.id
        with pytest.raises(TokenRejected):
            await identity.refresh(first.refresh_token)

    @pytest.mark.asyncio
    async def test_revoke_token_only_for_owner(
        self,
        identity: IdentityService,
        test_user: User,
        other_user: User,
        user_password: str,
    ):
        tokens = await identity.login(test_user.email, user_password)

        assert await identity.revoke_token(tokens.refresh_token, other_user.id) is False
        assert await identity.revoke_token(tokens.refresh_token, test_user.id) is True
        with pytest.raises(TokenRejected):
            await identity.refresh(tokens.refresh_token)

    @pytest.mark.asyncio
    async def test_revoke_all_tokens(self, identity: IdentityService, test_user: User, user_password: str):
        sessions = [await identity.login(test_user.email, user_password) for _ in range(2)]

        assert await identity.revoke_all_tokens(test_user.id) == 2
        for tokens in sessions:
            with pytest.raises(TokenRejected):
                await identity.refresh(tokens.refresh_token)

class TestPasswordReset:

    @pytest.mark.asyncio
    async def test_validate_code_reports_bool(self, identity: IdentityService, notifier, test_user: User):
        await identity.forgot_password(test_user.email)

        assert await identity.validate_code(test_user.email, notifier.last_code()) is True
        assert await identity.validate_code("nobody@example.com", notifier.last_code()) is False

    @pytest.mark.asyncio
    async def test_reset_then_login_with_new_password(
        self,
        identity: IdentityService,
        notifier,
        test_user: User,
        user_password: str,
    ):
        await identity.forgot_password(test_user.email)

        result = await identity.verify_reset_code(test_user.email, notifier.last_code(), "BrandNewPass456!")

        assert result.outcome is ResetOutcome.PASSWORD_CHANGED
        await identity.login(test_user.email, "BrandNewPass456!")
        with pytest.raises(InvalidCredentials):
            await identity.login(test_user.email, user_password)

    @pytest.mark.asyncio
    async def test_verify_twice_rejected(self, identity: IdentityService, notifier, test_user: User):
        await identity.forgot_password(test_user.email)
        code = notifier.last_code()
        await identity.verify_reset_code(test_user.email, code)

        with pytest.raises(CodeRejected):
            await identity.verify_reset_code(test_user.email, code)

class TestTimeouts:

    @pytest.mark.asyncio
    async def test_slow_operation_surfaces_as_upstream_unavailable(self, identity: IdentityService, test_user: User):
        identity.config = replace(identity.config, operation_timeout_seconds=0.01)

        async def stall(*args, **kwargs):
            await asyncio.sleep(1)

        identity.ledger.revoke_all = stall

        with pytest.raises(UpstreamUnavailable):
            await identity.revoke_all_tokens(test_user.id)

    @pytest.mark.asyncio
    async def test_forgot_password_never_fails_on_slow_delivery(
        self,
        identity: IdentityService,
        notifier,
        test_user: User,
    ):
        identity.config = replace(identity.config, operation_timeout_seconds=0.2)
        identity.reset_flow.config = replace(identity.reset_flow.config, notifier_timeout_seconds=None)

        async def hang(**kwargs):
            await asyncio.sleep(5)

        notifier.send_password_reset_code = hang

        assert await identity.forgot_password(test_user.email) is None
