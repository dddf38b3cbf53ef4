"""
Feature entitlements for offices.

This module provides:
- EntitlementEvaluator: Entitlement checks and the activation lifecycle
- SqlAlchemyEntitlementGateway: Persistence behind EntitlementStoreGateway
- EntitlementAuditLogger: Structured audit events
- HttpTokenVerifier: External verification of paid activation tokens
- FeatureCatalogSeeder: Idempotent catalog seeding

An office is entitled to a feature group while its grant is active and
not past expires_at. Expiry is evaluated lazily on every read.
"""

from office_access.entitlements.audit import AccessDenialEvent, EntitlementAuditLogger
from office_access.entitlements.errors import (
    ActivationError,
    EntitlementError,
    TokenVerificationError,
)
from office_access.entitlements.gateway import (
    EntitlementStoreGateway,
    SqlAlchemyEntitlementGateway,
)
from office_access.entitlements.models import (
    Feature,
    FeatureGroup,
    FeatureGroupRecord,
    FeatureRecord,
    FeatureToken,
    FeatureTokenRecord,
    OfficeFeatureGroup,
    OfficeFeatureGroupRecord,
    OfficeFeatureGroupStatus,
)
from office_access.entitlements.service import EntitlementEvaluator

__all__ = [
    "AccessDenialEvent",
    "EntitlementAuditLogger",
    "ActivationError",
    "EntitlementError",
    "TokenVerificationError",
    "EntitlementStoreGateway",
    "SqlAlchemyEntitlementGateway",
    "Feature",
    "FeatureGroup",
    "FeatureGroupRecord",
    "FeatureRecord",
    "FeatureToken",
    "FeatureTokenRecord",
    "OfficeFeatureGroup",
    "OfficeFeatureGroupRecord",
    "OfficeFeatureGroupStatus",
    "EntitlementEvaluator",
]
