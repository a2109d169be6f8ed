"""
Refresh token rows.

A token is active while it is neither revoked nor past its expiry. Those
states are derived from the stored timestamps, never stored as flags.
Rotation links a revoked token to its successor through ``replaced_by_token``.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.kernel.models.base import (
    Base,
    RecordMetadata,
    UTCDateTime,
    generate_uuid,
    record_metadata,
    utcnow,
)


class RefreshToken(Base):
    """Opaque refresh token issued to a principal."""

    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )
    created_by_ip: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    revoked_by_ip: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )
    replaced_by_token: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
    )
    record: Mapped[RecordMetadata] = record_metadata()

    __table_args__ = (
        Index("ix_refresh_tokens_user_revoked", "user_id", "revoked_at"),
    )

    @property
    def issued_at(self) -> Optional[datetime]:
        return self.record.created_at if self.record else None

    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return not self.is_revoked() and not self.is_expired(now)

    def __repr__(self) -> str:
        return f"<RefreshToken {self.id} user={self.user_id}>"
