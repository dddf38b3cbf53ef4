"""
Feature catalog seeding.

Creates the features, feature groups and tokens listed in the YAML
catalog. Idempotent: rows whose unique name already exists are skipped,
never updated, so running the seeder on every deploy is safe.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from office_access.config.feature_catalog import FeatureCatalog
from office_access.entitlements.models import Feature, FeatureGroup, FeatureToken

logger = logging.getLogger(__name__)


@dataclass
class SeedStats:
    features_created: int = 0
    feature_groups_created: int = 0
    tokens_created: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "features_created": self.features_created,
            "feature_groups_created": self.feature_groups_created,
            "tokens_created": self.tokens_created,
            "skipped": self.skipped,
        }


class FeatureCatalogSeeder:
    """Seeds catalog rows through a caller-owned session (flush only)."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def seed(self, catalog: FeatureCatalog) -> SeedStats:
        stats = SeedStats()

        features = {f.name: f for f in self.db.query(Feature).all()}
        for definition in catalog.features:
            if definition.name in features:
                stats.skipped += 1
                continue
            feature = Feature(
                name=definition.name,
                description=definition.description,
                is_active=definition.is_active,
            )
            self.db.add(feature)
            features[definition.name] = feature
            stats.features_created += 1

        groups = {g.name: g for g in self.db.query(FeatureGroup).all()}
        for definition in catalog.feature_groups:
            if definition.name in groups:
                stats.skipped += 1
                continue
            members = []
            for feature_name in definition.features:
                feature = features.get(feature_name)
                if feature is None:
                    logger.warning(
                        "Feature group references unknown feature",
                        extra={"feature_group": definition.name, "feature_name": feature_name},
                    )
                    continue
                members.append(feature)
            group = FeatureGroup(
                name=definition.name,
                app_name=definition.app_name,
                is_paid=definition.is_paid,
                description=definition.description,
                features=members,
            )
            self.db.add(group)
            groups[definition.name] = group
            stats.feature_groups_created += 1

        # Group ids are generated on flush
        self.db.flush()

        existing_tokens = {t.token_name for t in self.db.query(FeatureToken.token_name).all()}
        for definition in catalog.tokens:
            if definition.token_name in existing_tokens:
                stats.skipped += 1
                continue
            group = groups.get(definition.feature_group)
            if group is None:
                logger.warning(
                    "Token references unknown feature group",
                    extra={"token_name": definition.token_name, "feature_group": definition.feature_group},
                )
                continue
            self.db.add(
                FeatureToken(
                    token_name=definition.token_name,
                    feature_group_id=group.id,
                    expires_in_days=definition.expires_in_days,
                    description=definition.description,
                )
            )
            stats.tokens_created += 1

        self.db.flush()
        logger.info("Seeded feature catalog", extra=stats.to_dict())
        return stats
