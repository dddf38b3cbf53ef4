"""
Entitlement models - feature catalog and office grants.

Provides:
- FeatureRecord / FeatureGroupRecord / FeatureTokenRecord /
  OfficeFeatureGroupRecord: frozen domain records returned by the gateway
- OfficeFeatureGroupStatus: a feature group paired with one office's grant
- Feature / FeatureGroup / FeatureToken / OfficeFeatureGroup: SQLAlchemy rows
- ensure_utc(): normalise datetimes read back from databases that drop tzinfo

An office is currently entitled to a feature group iff its
OfficeFeatureGroup row has is_active = True AND (expires_at IS NULL OR
expires_at > now). Expiry is lazy: no write is needed for a grant to lapse.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from office_access.db_base import Base
from office_access.models.base import SoftDeleteMixin, TimestampMixin, generate_uuid

logger = logging.getLogger(__name__)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them naive)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Domain records (frozen dataclasses)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeatureRecord:
    """An atomic capability descriptor."""
    id: str
    name: str
    is_active: bool = True
    description: Optional[str] = None


@dataclass(frozen=True)
class FeatureGroupRecord:
    """A bundle of features distributed as a unit."""
    id: str
    name: str
    app_name: str
    is_paid: bool = False
    features: Tuple[FeatureRecord, ...] = ()
    description: Optional[str] = None

    @property
    def feature_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.features)

    def has_feature(self, feature_name: str) -> bool:
        return any(f.name == feature_name for f in self.features)


@dataclass(frozen=True)
class FeatureTokenRecord:
    """
    Activation credential for a feature group.

    expires_in_days = None means grants activated with this token never expire.
    """
    id: str
    token_name: str
    feature_group_id: str
    expires_in_days: Optional[int] = None
    is_active: bool = True
    description: Optional[str] = None

    def compute_expiry(self, activated_at: datetime) -> Optional[datetime]:
        if self.expires_in_days is None:
            return None
        return activated_at + timedelta(days=self.expires_in_days)


@dataclass(frozen=True)
class OfficeFeatureGroupRecord:
    """An office's (possibly time-boxed) grant of a feature group."""
    office_id: str
    feature_group_id: str
    is_active: bool = True
    token_id: Optional[str] = None
    activated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    id: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = ensure_utc(now) or utcnow()
        return ensure_utc(self.expires_at) <= now

    def is_current(self, now: Optional[datetime] = None) -> bool:
        """The sole "currently entitled" condition."""
        return bool(self.is_active) and not self.is_expired(now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "office_id": self.office_id,
            "feature_group_id": self.feature_group_id,
            "token_id": self.token_id,
            "is_active": self.is_active,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(frozen=True)
class OfficeFeatureGroupStatus:
    """A catalog feature group as seen by one office."""
    group: FeatureGroupRecord
    grant: Optional[OfficeFeatureGroupRecord] = None
    is_active: bool = False

    @property
    def feature_count(self) -> int:
        return len(self.group.features)

    def to_dict(self) -> Dict[str, Any]:
        grant = self.grant
        return {
            "id": self.group.id,
            "name": self.group.name,
            "app_name": self.group.app_name,
            "description": self.group.description,
            "is_paid": self.group.is_paid,
            "is_active": self.is_active,
            "activated_at": grant.activated_at.isoformat() if grant and grant.activated_at else None,
            "expires_at": grant.expires_at.isoformat() if grant and grant.expires_at else None,
            "feature_count": self.feature_count,
            "features": [f.name for f in self.group.features],
        }


# ---------------------------------------------------------------------------
# SQLAlchemy models
# ---------------------------------------------------------------------------

feature_group_features = Table(
    "feature_group_features",
    Base.metadata,
    Column(
        "feature_group_id",
        String(255),
        ForeignKey("feature_groups.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "feature_id",
        String(255),
        ForeignKey("features.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Feature(Base, TimestampMixin, SoftDeleteMixin):
    """Atomic capability. Soft-deleted, never hard-removed while referenced."""

    __tablename__ = "features"

    id = Column(String(255), primary_key=True, default=generate_uuid, comment="Primary key (UUID)")
    name = Column(String(255), nullable=False, unique=True, comment="Unique feature name")
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    feature_groups = relationship(
        "FeatureGroup",
        secondary=feature_group_features,
        back_populates="features",
    )

    def __repr__(self) -> str:
        return f"<Feature(name={self.name}, is_active={self.is_active})>"

    def to_domain(self) -> FeatureRecord:
        return FeatureRecord(
            id=self.id,
            name=self.name,
            is_active=bool(self.is_active) and not self.is_deleted,
            description=self.description,
        )


class FeatureGroup(Base, TimestampMixin, SoftDeleteMixin):
    """Bundle of features distributed as a unit, free or paid."""

    __tablename__ = "feature_groups"

    id = Column(String(255), primary_key=True, default=generate_uuid, comment="Primary key (UUID)")
    name = Column(String(255), nullable=False, unique=True)
    app_name = Column(
        String(255),
        nullable=False,
        unique=True,
        comment="Application name used by the external token verifier",
    )
    description = Column(Text, nullable=True)
    is_paid = Column(Boolean, nullable=False, default=False)

    features = relationship(
        "Feature",
        secondary=feature_group_features,
        back_populates="feature_groups",
    )
    tokens = relationship("FeatureToken", back_populates="feature_group")

    def __repr__(self) -> str:
        return f"<FeatureGroup(name={self.name}, is_paid={self.is_paid})>"

    def to_domain(self) -> FeatureGroupRecord:
        return FeatureGroupRecord(
            id=self.id,
            name=self.name,
            app_name=self.app_name,
            is_paid=bool(self.is_paid),
            features=tuple(
                f.to_domain()
                for f in sorted(self.features, key=lambda f: f.name)
                if not f.is_deleted
            ),
            description=self.description,
        )


class FeatureToken(Base, TimestampMixin, SoftDeleteMixin):
    """Activation credential configuration for a feature group."""

    __tablename__ = "feature_tokens"

    id = Column(String(255), primary_key=True, default=generate_uuid, comment="Primary key (UUID)")
    token_name = Column(String(255), nullable=False, unique=True)
    feature_group_id = Column(
        String(255),
        ForeignKey("feature_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_in_days = Column(
        Integer,
        nullable=True,
        comment="Grant lifetime in days; NULL means non-expiring",
    )
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=True)

    feature_group = relationship("FeatureGroup", back_populates="tokens")

    def __repr__(self) -> str:
        return f"<FeatureToken(token_name={self.token_name}, expires_in_days={self.expires_in_days})>"

    def to_domain(self) -> FeatureTokenRecord:
        return FeatureTokenRecord(
            id=self.id,
            token_name=self.token_name,
            feature_group_id=self.feature_group_id,
            expires_in_days=self.expires_in_days,
            is_active=bool(self.is_active) and not self.is_deleted,
            description=self.description,
        )


class OfficeFeatureGroup(Base, TimestampMixin):
    """
    Join entity recording that an office holds a grant of a feature group.

    Unique per (office_id, feature_group_id). Deactivation flips is_active;
    rows are kept for the audit trail.
    """

    __tablename__ = "office_feature_groups"

    id = Column(String(255), primary_key=True, default=generate_uuid, comment="Primary key (UUID)")
    office_id = Column(String(255), nullable=False, index=True, comment="Office holding the grant")
    feature_group_id = Column(
        String(255),
        ForeignKey("feature_groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    token_id = Column(
        String(255),
        ForeignKey("feature_tokens.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)

    feature_group = relationship("FeatureGroup")
    token = relationship("FeatureToken")

    __table_args__ = (
        UniqueConstraint(
            "office_id",
            "feature_group_id",
            name="uq_office_feature_group_office_group",
        ),
        Index(
            "idx_office_feature_groups_office_active",
            "office_id",
            "is_active",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<OfficeFeatureGroup("
            f"office_id={self.office_id}, "
            f"feature_group_id={self.feature_group_id}, "
            f"is_active={self.is_active}, "
            f"expires_at={self.expires_at}"
            f")>"
        )

    def to_domain(self) -> OfficeFeatureGroupRecord:
        return OfficeFeatureGroupRecord(
            id=self.id,
            office_id=self.office_id,
            feature_group_id=self.feature_group_id,
            token_id=self.token_id,
            is_active=bool(self.is_active),
            activated_at=ensure_utc(self.activated_at),
            expires_at=ensure_utc(self.expires_at),
        )
