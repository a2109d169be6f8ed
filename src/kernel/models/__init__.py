"""
Kernel Data Models

SQLAlchemy models for principals, roles, refresh tokens and reset codes.
Importing this package registers the record metadata hooks.
"""

from src.kernel.models.base import (
    Base,
    RecordMetadata,
    UTCDateTime,
    generate_uuid,
    record_metadata,
    utcnow,
)
from src.kernel.models.user import User, Role, user_roles
from src.kernel.models.refresh_token import RefreshToken
from src.kernel.models.reset_code import PasswordResetCode
from src.kernel.models import audit  # noqa: F401

__all__ = [
    # Base
    "Base",
    "RecordMetadata",
    "UTCDateTime",
    "generate_uuid",
    "record_metadata",
    "utcnow",
    # Identity
    "User",
    "Role",
    "user_roles",
    "RefreshToken",
    "PasswordResetCode",
]
