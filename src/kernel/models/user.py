"""
Principal and role models for identity management.
"""

import uuid
from typing import List

from sqlalchemy import Column, ForeignKey, String, Table, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.kernel.models.base import Base, RecordMetadata, generate_uuid, record_metadata


user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Uuid(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Uuid(), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base):
    """Named role granted to principals and emitted as a token claim."""

    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        index=True,
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        String(255),
        default="",
        nullable=False,
    )
    record: Mapped[RecordMetadata] = record_metadata()

    def __repr__(self) -> str:
        return f"<Role {self.name}>"


class User(Base):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    username: Mapped[str] = mapped_column(
        String(100),
        index=True,
        nullable=False,
    )
    first_name: Mapped[str] = mapped_column(
        String(100),
        default="",
        nullable=False,
    )
    last_name: Mapped[str] = mapped_column(
        String(100),
        default="",
        nullable=False,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    record: Mapped[RecordMetadata] = record_metadata()

    # Eagerly loaded so detached principals still carry their role names
    roles: Mapped[List[Role]] = relationship(
        Role,
        secondary=user_roles,
        lazy="selectin",
    )

    @property
    def role_names(self) -> list[str]:
        return sorted(role.name for role in self.roles)

    def __repr__(self) -> str:
        return f"<User {self.email}>"
