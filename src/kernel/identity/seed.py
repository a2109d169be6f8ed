"""
Startup seeding of roles and the optional admin account.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.database import unit_of_work
from src.kernel.errors import ConfigurationFatal
from src.kernel.identity.directory import PrincipalDirectory
from src.kernel.identity.password import hash_password
from src.kernel.models.user import Role
from src.logging_config import get_logger

logger = get_logger(__name__)

SEED_ACTOR = "system"


def default_roles(settings: Settings) -> dict[str, str]:
    return {
        settings.admin_role: "Administrator with full access",
        settings.default_role: "Regular user with basic access",
    }


async def seed_roles(
    session_factory: async_sessionmaker[AsyncSession],
    roles: dict[str, str],
    session: Optional[AsyncSession] = None,
) -> int:
    """Create any missing roles. Returns how many were added."""
    async with unit_of_work(session_factory, session, actor=SEED_ACTOR) as s:
        result = await s.execute(select(Role.name).where(Role.name.in_(roles)))
        existing = set(result.scalars().all())
        missing = [name for name in roles if name not in existing]
        for name in missing:
            s.add(Role(name=name, description=roles[name]))
        await s.flush()

    if missing:
        logger.info("Seeded roles", extra={"roles": missing})
    return len(missing)


async def seed_admin_user(directory: PrincipalDirectory, settings: Settings) -> bool:
    """
    Create the admin account from settings if it does not exist yet.

    Skipped when no admin password is configured.
    """
    if not settings.admin_password:
        return False

    async with unit_of_work(directory.session_factory, actor=SEED_ACTOR) as s:
        if await directory.email_exists(settings.admin_email, session=s):
            return False

        role_names = [settings.admin_role, settings.default_role]
        roles = [
            role for role in [await directory.get_role(name, session=s) for name in role_names]
            if role is not None
        ]
        await directory.create_user(
            username=settings.admin_username,
            email=settings.admin_email,
            password_hash=hash_password(settings.admin_password),
            roles=roles,
            first_name=settings.admin_first_name,
            last_name=settings.admin_last_name,
            session=s,
        )

    logger.info("Seeded admin user")
    return True


async def ensure_default_role(directory: PrincipalDirectory, role_name: str) -> None:
    """Refuse to start when registration would have no role to grant."""
    if await directory.get_role(role_name) is None:
        raise ConfigurationFatal(f"Default role '{role_name}' does not exist")
