"""
Entitlement Store Gateway.

Read/write access to Feature, FeatureGroup, FeatureToken and
OfficeFeatureGroup records. The evaluator only ever sees the frozen
domain records from office_access.entitlements.models, never ORM rows.

EntitlementStoreGateway is the contract; SqlAlchemyEntitlementGateway is
the implementation over a synchronous SQLAlchemy Session.

CRITICAL: Writes flush but never commit. Transaction boundaries belong to
the caller (request scope or job loop). Flushing keeps read-after-write
consistency for the same session.
"""

import logging
from datetime import datetime
from typing import List, Optional, Protocol

from sqlalchemy.orm import Session

from office_access.entitlements.models import (
    Feature,
    FeatureGroup,
    FeatureGroupRecord,
    FeatureRecord,
    FeatureToken,
    FeatureTokenRecord,
    OfficeFeatureGroup,
    OfficeFeatureGroupRecord,
)

logger = logging.getLogger(__name__)


class EntitlementStoreGateway(Protocol):
    """Persistence contract consumed by the entitlement evaluator."""

    def get_office_feature_group(
        self, office_id: str, feature_group_id: str
    ) -> Optional[OfficeFeatureGroupRecord]:
        ...

    def get_feature_group(self, feature_group_id: str) -> Optional[FeatureGroupRecord]:
        ...

    def get_feature_group_by_name(self, name: str) -> Optional[FeatureGroupRecord]:
        ...

    def list_feature_groups(self) -> List[FeatureGroupRecord]:
        ...

    def get_feature_group_by_feature(self, feature_name: str) -> Optional[FeatureGroupRecord]:
        ...

    def get_feature_groups_by_feature(self, feature_name: str) -> List[FeatureGroupRecord]:
        ...

    def get_feature(self, feature_name: str) -> Optional[FeatureRecord]:
        ...

    def list_office_feature_groups(self, office_id: str) -> List[OfficeFeatureGroupRecord]:
        ...

    def upsert_office_feature_group(
        self, record: OfficeFeatureGroupRecord
    ) -> OfficeFeatureGroupRecord:
        ...

    def get_token(self, token_name: str) -> Optional[FeatureTokenRecord]:
        ...

    def list_expired_grants(self, now: datetime) -> List[OfficeFeatureGroupRecord]:
        ...


class SqlAlchemyEntitlementGateway:
    """
    SQLAlchemy-backed gateway.

    Soft-deleted features, groups and tokens are invisible to every read.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    # ------------------------------------------------------------------
    # Office grants
    # ------------------------------------------------------------------

    def _office_feature_group_row(
        self, office_id: str, feature_group_id: str
    ) -> Optional[OfficeFeatureGroup]:
        return (
            self.db.query(OfficeFeatureGroup)
            .filter(
                OfficeFeatureGroup.office_id == office_id,
                OfficeFeatureGroup.feature_group_id == feature_group_id,
            )
            .first()
        )

    def get_office_feature_group(
        self, office_id: str, feature_group_id: str
    ) -> Optional[OfficeFeatureGroupRecord]:
        row = self._office_feature_group_row(office_id, feature_group_id)
        return row.to_domain() if row else None

    def list_office_feature_groups(self, office_id: str) -> List[OfficeFeatureGroupRecord]:
        rows = (
            self.db.query(OfficeFeatureGroup)
            .filter(OfficeFeatureGroup.office_id == office_id)
            .order_by(OfficeFeatureGroup.feature_group_id)
            .all()
        )
        return [row.to_domain() for row in rows]

    def upsert_office_feature_group(
        self, record: OfficeFeatureGroupRecord
    ) -> OfficeFeatureGroupRecord:
        """
        Insert or update the grant keyed by (office_id, feature_group_id).

        Returns:
            The stored record, with its generated id
        """
        row = self._office_feature_group_row(record.office_id, record.feature_group_id)
        created = row is None
        if created:
            row = OfficeFeatureGroup(
                office_id=record.office_id,
                feature_group_id=record.feature_group_id,
            )
            self.db.add(row)

        row.token_id = record.token_id
        row.is_active = record.is_active
        row.activated_at = record.activated_at
        row.expires_at = record.expires_at
        self.db.flush()

        logger.debug(
            "Upserted office feature group",
            extra={
                "office_id": record.office_id,
                "feature_group_id": record.feature_group_id,
                "is_active": record.is_active,
                "created": created,
            },
        )
        return row.to_domain()

    def list_expired_grants(self, now: datetime) -> List[OfficeFeatureGroupRecord]:
        """Active grants whose expires_at has passed."""
        rows = (
            self.db.query(OfficeFeatureGroup)
            .filter(
                OfficeFeatureGroup.is_active.is_(True),
                OfficeFeatureGroup.expires_at.isnot(None),
                OfficeFeatureGroup.expires_at <= now,
            )
            .all()
        )
        return [row.to_domain() for row in rows]

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_feature_group(self, feature_group_id: str) -> Optional[FeatureGroupRecord]:
        row = (
            self.db.query(FeatureGroup)
            .filter(
                FeatureGroup.id == feature_group_id,
                FeatureGroup.deleted_at.is_(None),
            )
            .first()
        )
        return row.to_domain() if row else None

    def get_feature_group_by_name(self, name: str) -> Optional[FeatureGroupRecord]:
        row = (
            self.db.query(FeatureGroup)
            .filter(
                FeatureGroup.name == name,
                FeatureGroup.deleted_at.is_(None),
            )
            .first()
        )
        return row.to_domain() if row else None

    def list_feature_groups(self) -> List[FeatureGroupRecord]:
        """Every live feature group, ordered by name."""
        rows = (
            self.db.query(FeatureGroup)
            .filter(FeatureGroup.deleted_at.is_(None))
            .order_by(FeatureGroup.name)
            .all()
        )
        return [row.to_domain() for row in rows]

    def get_feature_groups_by_feature(self, feature_name: str) -> List[FeatureGroupRecord]:
        rows = (
            self.db.query(FeatureGroup)
            .join(FeatureGroup.features)
            .filter(
                Feature.name == feature_name,
                Feature.deleted_at.is_(None),
                FeatureGroup.deleted_at.is_(None),
            )
            .order_by(FeatureGroup.name)
            .all()
        )
        return [row.to_domain() for row in rows]

    def get_feature_group_by_feature(self, feature_name: str) -> Optional[FeatureGroupRecord]:
        """First owning group by name; a feature may belong to several."""
        groups = self.get_feature_groups_by_feature(feature_name)
        return groups[0] if groups else None

    def get_feature(self, feature_name: str) -> Optional[FeatureRecord]:
        row = (
            self.db.query(Feature)
            .filter(
                Feature.name == feature_name,
                Feature.deleted_at.is_(None),
            )
            .first()
        )
        return row.to_domain() if row else None

    def get_token(self, token_name: str) -> Optional[FeatureTokenRecord]:
        row = (
            self.db.query(FeatureToken)
            .filter(
                FeatureToken.token_name == token_name,
                FeatureToken.deleted_at.is_(None),
            )
            .first()
        )
        return row.to_domain() if row else None
