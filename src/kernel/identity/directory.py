"""
Principal directory: lookup, creation and password-hash updates of users.

The credential core never writes the users table directly; it goes
through this class.
"""

import uuid
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.database import unit_of_work
from src.kernel.errors import DuplicateAccount
from src.kernel.models.user import Role, User


def normalize_email(email: str) -> str:
    return email.strip().lower()


class PrincipalDirectory:
    """Async SQLAlchemy-backed store of principals and their roles."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_by_email(
        self,
        email: str,
        session: Optional[AsyncSession] = None,
        for_update: bool = False,
    ) -> Optional[User]:
        """
        Get a user by email, roles loaded.

        ``for_update`` locks the row until the caller's transaction ends,
        serializing per-principal read-modify-write sequences.
        """
        query = select(User).where(User.email == normalize_email(email))
        if for_update:
            query = query.with_for_update()
        async with unit_of_work(self.session_factory, session) as s:
            result = await s.execute(query)
            return result.scalar_one_or_none()

    async def get_by_id(
        self,
        user_id: uuid.UUID,
        session: Optional[AsyncSession] = None,
    ) -> Optional[User]:
        """Get a user by ID, roles loaded."""
        async with unit_of_work(self.session_factory, session) as s:
            result = await s.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()

    async def email_exists(self, email: str, session: Optional[AsyncSession] = None) -> bool:
        async with unit_of_work(self.session_factory, session) as s:
            result = await s.execute(
                select(User.id).where(User.email == normalize_email(email))
            )
            return result.first() is not None

    async def get_role(self, name: str, session: Optional[AsyncSession] = None) -> Optional[Role]:
        async with unit_of_work(self.session_factory, session) as s:
            result = await s.execute(select(Role).where(Role.name == name))
            return result.scalar_one_or_none()

    async def create_user(
        self,
        *,
        username: str,
        email: str,
        password_hash: str,
        roles: Iterable[Role],
        first_name: str = "",
        last_name: str = "",
        session: Optional[AsyncSession] = None,
    ) -> User:
        """
        Create a principal.

        Raises:
            DuplicateAccount: If the email is already registered
        """
        async with unit_of_work(self.session_factory, session) as s:
            user = User(
                username=username.strip(),
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                email=normalize_email(email),
                password_hash=password_hash,
            )
            user.roles = list(roles)
            s.add(user)
            try:
                await s.flush()  # Get the ID, surface the unique constraint
            except IntegrityError as exc:
                raise DuplicateAccount() from exc
            return user

    async def update_password_hash(
        self,
        user_id: uuid.UUID,
        password_hash: str,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """Replace the stored hash. Returns False if the user does not exist."""
        async with unit_of_work(self.session_factory, session) as s:
            result = await s.execute(
                update(User.__table__)
                .where(User.__table__.c.id == user_id)
                .values(password_hash=password_hash)
            )
            return result.rowcount == 1
