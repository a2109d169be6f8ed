"""
Base model with common fields and utilities.

Entities do not inherit audit columns. Each one embeds a RecordMetadata value
through ``record_metadata()``; the hooks in ``audit.py`` keep it current.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String, Uuid
from sqlalchemy.orm import DeclarativeBase, composite, mapped_column
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    # Use generic Uuid type for cross-database compatibility
    type_annotation_map = {
        uuid.UUID: Uuid(),
    }


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime.

    SQLite hands back naive values even for ``DateTime(timezone=True)``;
    results are normalised so comparisons with ``utcnow()`` never mix
    naive and aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


@dataclass
class RecordMetadata:
    """Creation, modification and deletion stamps shared by every entity."""

    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    modified_at: Optional[datetime] = None
    modified_by: Optional[str] = None
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


def record_metadata():
    """Map a fresh set of metadata columns as a RecordMetadata composite."""
    return composite(
        RecordMetadata,
        mapped_column("created_at", UTCDateTime(), nullable=False),
        mapped_column("created_by", String(255), nullable=True),
        mapped_column("modified_at", UTCDateTime(), nullable=True),
        mapped_column("modified_by", String(255), nullable=True),
        mapped_column("deleted_at", UTCDateTime(), nullable=True),
        mapped_column("deleted_by", String(255), nullable=True),
    )


def generate_uuid() -> uuid.UUID:
    """Generate a new UUID."""
    return uuid.uuid4()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
