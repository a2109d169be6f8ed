"""
Pytest fixtures for auth service tests.

Every test gets its own file-backed SQLite database so concurrent
sessions see each other's commits.
"""

import os
import tempfile
from typing import AsyncGenerator

# Settings are read at import time by src.database; point them at a scratch DB first
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp.close()
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmp.name}"
os.environ["SECRET_KEY"] = "test-signing-key-for-the-auth-suite-0123456789"
os.environ["ADMIN_PASSWORD"] = ""
os.environ["SMTP_HOST"] = ""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.config import AuthConfig, get_settings
from src.database import build_engine, build_session_maker, init_db
from src.kernel.errors import UpstreamUnavailable
from src.kernel.identity.directory import PrincipalDirectory
from src.kernel.identity.identity_service import IdentityService, build_identity_service
from src.kernel.identity.jwt import TokenIssuer
from src.kernel.identity.password import hash_password
from src.kernel.identity.refresh_tokens import RefreshTokenLedger
from src.kernel.identity.reset_codes import ResetCodeFlow
from src.kernel.identity.seed import seed_roles
from src.kernel.models.user import User

get_settings.cache_clear()

TEST_SECRET_KEY = os.environ["SECRET_KEY"]
TEST_PASSWORD = "TestPassword123!"
TEST_ROLES = {
    "Admin": "Administrator with full access",
    "User": "Regular user with basic access",
}


class RecordingNotifier:
    """Notifier that keeps every reset code it is handed."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send_password_reset_code(self, to_email, code, username, expires_minutes):
        if self.fail:
            raise UpstreamUnavailable("SMTP down")
        self.sent.append(
            {
                "to_email": to_email,
                "code": code,
                "username": username,
                "expires_minutes": expires_minutes,
            }
        )

    def last_code(self) -> str:
        return self.sent[-1]["code"]


@pytest.fixture
def user_password() -> str:
    """Password every fixture user is created with."""
    return TEST_PASSWORD


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(secret_key=TEST_SECRET_KEY)


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine with all tables."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_maker(db_engine)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def identity(
    auth_config: AuthConfig,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: RecordingNotifier,
) -> IdentityService:
    """Fully wired service over a seeded database."""
    service = build_identity_service(auth_config, session_factory, notifier)
    await seed_roles(session_factory, TEST_ROLES)
    return service


@pytest.fixture
def issuer(identity: IdentityService) -> TokenIssuer:
    return identity.issuer


@pytest.fixture
def directory(identity: IdentityService) -> PrincipalDirectory:
    return identity.directory


@pytest.fixture
def ledger(identity: IdentityService) -> RefreshTokenLedger:
    return identity.ledger


@pytest.fixture
def reset_flow(identity: IdentityService) -> ResetCodeFlow:
    return identity.reset_flow


async def create_user(
    directory: PrincipalDirectory,
    email: str,
    username: str,
    role_names: tuple[str, ...] = ("User",),
) -> User:
    roles = [await directory.get_role(name) for name in role_names]
    return await directory.create_user(
        username=username,
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        roles=roles,
    )


@pytest_asyncio.fixture
async def test_user(directory: PrincipalDirectory) -> User:
    """Create a test user with the default role."""
    return await create_user(directory, "testuser@example.com", "testuser")


@pytest_asyncio.fixture
async def other_user(directory: PrincipalDirectory) -> User:
    return await create_user(directory, "other@example.com", "other")


@pytest_asyncio.fixture
async def test_admin(directory: PrincipalDirectory) -> User:
    """Create a test admin user."""
    return await create_user(directory, "admin@example.com", "admin", ("Admin", "User"))


def pytest_sessionfinish(session, exitstatus):
    """Clean up the scratch DB file after the run."""
    try:
        os.unlink(_tmp.name)
    except OSError:
        pass
