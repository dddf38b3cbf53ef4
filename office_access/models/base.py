"""
Base mixins for database models.

Provides common functionality:
- TimestampMixin: created_at, updated_at timestamps
- SoftDeleteMixin: deleted_at marker; rows are never hard-removed while referenced
- generate_uuid: UUID generation for primary keys
"""

import uuid

from sqlalchemy import Column, DateTime, func


def generate_uuid() -> str:
    """Generate a UUID4 string for use as a primary key default."""
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Timestamp when record was last updated"
    )


class SoftDeleteMixin:
    """Mixin that adds a deleted_at column. Queries must exclude deleted rows."""

    deleted_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Soft-delete timestamp; NULL while the row is live"
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
