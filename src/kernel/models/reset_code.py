"""
One-time password reset codes.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.kernel.models.base import (
    Base,
    RecordMetadata,
    UTCDateTime,
    generate_uuid,
    record_metadata,
    utcnow,
)


class PasswordResetCode(Base):
    """
    Six-digit code mailed to a principal.

    Stored in clear: it is short-lived and single-use. A code is redeemable
    while it is unused and unexpired; ``is_used`` flips once and never back.
    """

    __tablename__ = "password_reset_codes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(
        String(6),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )
    is_used: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    record: Mapped[RecordMetadata] = record_metadata()

    __table_args__ = (
        Index("ix_password_reset_codes_user_code_expiry", "user_id", "code", "expires_at"),
    )

    def is_redeemable(self, now: Optional[datetime] = None) -> bool:
        return not self.is_used and (now or utcnow()) < self.expires_at

    def __repr__(self) -> str:
        return f"<PasswordResetCode {self.id} user={self.user_id}>"
