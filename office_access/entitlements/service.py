"""
Entitlement Evaluator - decides what an office is currently entitled to.

Provides:
- is_feature_group_active_for_office(office_id, feature_group_name)
- is_granular_feature_available(office_id, feature_name, operation_name)
- is_feature_active_for_office / get_active_features_for_office /
  check_multiple_features / list_feature_groups_for_office
- activate_feature_group / deactivate_feature_group / deactivate_expired

Architecture:
- Fail-CLOSED: gateway failures during evaluation mean "not entitled",
  never an exception
- Lazy expiry: a grant is current iff is_active AND (expires_at IS NULL OR
  expires_at > now); nothing has to be written for a grant to lapse
- No caching: every decision re-reads the gateway

CRITICAL: An unregistered granular feature raises ConfigurationError.
That is a deployment defect and must stay distinguishable from an office
that simply lacks the feature.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from office_access.entitlements.audit import EntitlementAuditLogger
from office_access.entitlements.errors import ActivationError
from office_access.entitlements.gateway import EntitlementStoreGateway
from office_access.entitlements.models import (
    FeatureGroupRecord,
    FeatureTokenRecord,
    OfficeFeatureGroupRecord,
    OfficeFeatureGroupStatus,
    ensure_utc,
    utcnow,
)
from office_access.entitlements.token_verification import TokenVerifier
from office_access.features.registry import FeatureRegistry
from office_access.platform.errors import ConfigurationError

logger = logging.getLogger(__name__)


class EntitlementEvaluator:
    """
    Entitlement checks and the activation lifecycle for office grants.

    One evaluator per gateway (i.e. per session / request scope). The
    registry is the process-wide instance owned by the composition root.
    """

    def __init__(
        self,
        gateway: EntitlementStoreGateway,
        registry: FeatureRegistry,
        audit_logger: Optional[EntitlementAuditLogger] = None,
        token_verifier: Optional[TokenVerifier] = None,
    ):
        self.gateway = gateway
        self.registry = registry
        self.audit_logger = audit_logger or EntitlementAuditLogger()
        self.token_verifier = token_verifier

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _grant_is_current(
        self, office_id: str, feature_group_id: str, now: datetime
    ) -> bool:
        grant = self.gateway.get_office_feature_group(office_id, feature_group_id)
        return grant is not None and grant.is_current(now)

    def _resolve_group(self, feature_group: str) -> Optional[FeatureGroupRecord]:
        """Look a group up by name first, then by id."""
        group = self.gateway.get_feature_group_by_name(feature_group)
        if group is None:
            group = self.gateway.get_feature_group(feature_group)
        return group

    def is_feature_group_active_for_office(
        self,
        office_id: str,
        feature_group_name: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Check whether an office currently holds a grant of a feature group.

        Args:
            office_id: Office identifier
            feature_group_name: Feature group name (an id is also accepted)
            now: Evaluation time, defaults to the current UTC time

        Returns:
            True only for an active, non-expired grant. Missing office,
            missing group and gateway errors all yield False.
        """
        now = ensure_utc(now) or utcnow()
        try:
            group = self._resolve_group(feature_group_name)
            if group is None:
                logger.debug(
                    "Feature group not found",
                    extra={"feature_group": feature_group_name},
                )
                return False
            return self._grant_is_current(office_id, group.id, now)
        except Exception:
            logger.warning(
                "Feature group check failed, treating as not entitled",
                extra={"office_id": office_id, "feature_group": feature_group_name},
                exc_info=True,
            )
            return False

    def is_feature_active_for_office(
        self,
        office_id: str,
        feature_name: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        True iff the feature exists, is active, and belongs to at least one
        group the office is currently entitled to.
        """
        now = ensure_utc(now) or utcnow()
        try:
            feature = self.gateway.get_feature(feature_name)
            if feature is None or not feature.is_active:
                return False
            for group in self.gateway.get_feature_groups_by_feature(feature_name):
                if self._grant_is_current(office_id, group.id, now):
                    return True
            return False
        except Exception:
            logger.warning(
                "Feature check failed, treating as not entitled",
                extra={"office_id": office_id, "feature_name": feature_name},
                exc_info=True,
            )
            return False

    def is_granular_feature_available(
        self,
        office_id: str,
        feature_name: str,
        operation_name: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Check a granular (feature, operation) pair for an office.

        Raises:
            ConfigurationError: If the pair was never registered
        """
        if not self.registry.is_registered(feature_name, operation_name):
            logger.error(
                "Granular feature is not registered",
                extra={"feature_name": feature_name, "operation_name": operation_name},
            )
            raise ConfigurationError(
                f"Granular feature '{feature_name}:{operation_name}' is not registered",
                {"feature_name": feature_name, "operation_name": operation_name},
            )
        return self.is_feature_active_for_office(office_id, feature_name, now)

    def check_multiple_features(
        self,
        office_id: str,
        feature_names: Iterable[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, bool]:
        """Evaluate several features; each one fails closed on its own."""
        now = ensure_utc(now) or utcnow()
        return {
            name: self.is_feature_active_for_office(office_id, name, now)
            for name in feature_names
        }

    def get_active_features_for_office(
        self,
        office_id: str,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Sorted names of active features across all current grants."""
        now = ensure_utc(now) or utcnow()
        names = set()
        try:
            for grant in self.gateway.list_office_feature_groups(office_id):
                if not grant.is_current(now):
                    continue
                group = self.gateway.get_feature_group(grant.feature_group_id)
                if group is None:
                    continue
                names.update(f.name for f in group.features if f.is_active)
        except Exception:
            logger.warning(
                "Listing active features failed, returning none",
                extra={"office_id": office_id},
                exc_info=True,
            )
            return []
        return sorted(names)

    def list_feature_groups_for_office(
        self,
        office_id: str,
        now: Optional[datetime] = None,
    ) -> List[OfficeFeatureGroupStatus]:
        """
        Every catalog feature group with the office's grant status.

        is_active reflects the same condition entitlement checks use, so
        an expired or deactivated grant (and a group the office never
        activated) is reported inactive. Gateway errors propagate: this
        is an administrative listing, not an access decision.
        """
        now = ensure_utc(now) or utcnow()
        grants = {
            grant.feature_group_id: grant
            for grant in self.gateway.list_office_feature_groups(office_id)
        }
        statuses = []
        for group in self.gateway.list_feature_groups():
            grant = grants.get(group.id)
            statuses.append(
                OfficeFeatureGroupStatus(
                    group=group,
                    grant=grant,
                    is_active=grant is not None and grant.is_current(now),
                )
            )
        return statuses

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _validate_token(
        self, token_name: str, group: FeatureGroupRecord
    ) -> FeatureTokenRecord:
        token = self.gateway.get_token(token_name)
        if token is None:
            raise ActivationError(
                ActivationError.TOKEN_NOT_FOUND,
                f"Feature token '{token_name}' not found",
                {"token_name": token_name},
            )
        if not token.is_active:
            raise ActivationError(
                ActivationError.TOKEN_INACTIVE,
                f"Feature token '{token_name}' is not active",
                {"token_name": token_name},
            )
        if token.feature_group_id != group.id:
            raise ActivationError(
                ActivationError.TOKEN_GROUP_MISMATCH,
                f"Feature token '{token_name}' does not belong to feature group '{group.name}'",
                {"token_name": token_name, "feature_group_id": group.id},
            )

        if self.token_verifier is not None:
            result = self.token_verifier.verify(token_name, group.app_name)
            if not result.accepted:
                raise ActivationError(
                    ActivationError.TOKEN_REJECTED,
                    result.message or "Token verification failed",
                    {"token_name": token_name, "app_name": group.app_name},
                )
        return token

    def activate_feature_group(
        self,
        office_id: str,
        feature_group_id: str,
        token_name: Optional[str] = None,
        now: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> OfficeFeatureGroupRecord:
        """
        Activate a feature group for an office.

        Paid groups require a token; free groups activate without one.
        With a token, expires_at = now + token.expires_in_days (or None
        for non-expiring tokens). Re-activating a grant that is already
        current without a new token leaves it untouched.

        Raises:
            ActivationError: Unknown group, missing/invalid token
            TokenVerificationError: External verification unavailable
        """
        now = ensure_utc(now) or utcnow()

        group = self.gateway.get_feature_group(feature_group_id)
        if group is None:
            raise ActivationError(
                ActivationError.FEATURE_GROUP_NOT_FOUND,
                f"Feature group '{feature_group_id}' not found",
                {"feature_group_id": feature_group_id},
            )

        token = None
        if token_name:
            token = self._validate_token(token_name, group)
        elif group.is_paid:
            raise ActivationError(
                ActivationError.TOKEN_REQUIRED,
                f"Feature group '{group.name}' requires an activation token",
                {"feature_group_id": group.id},
            )

        existing = self.gateway.get_office_feature_group(office_id, group.id)
        if existing is not None and existing.is_current(now) and token is None:
            logger.debug(
                "Feature group already active",
                extra={"office_id": office_id, "feature_group_id": group.id},
            )
            return existing

        record = OfficeFeatureGroupRecord(
            office_id=office_id,
            feature_group_id=group.id,
            is_active=True,
            token_id=token.id if token else None,
            activated_at=now,
            expires_at=token.compute_expiry(now) if token else None,
        )
        stored = self.gateway.upsert_office_feature_group(record)

        logger.info(
            "Feature group activated",
            extra={
                "office_id": office_id,
                "feature_group_id": group.id,
                "token_id": stored.token_id,
                "expires_at": stored.expires_at.isoformat() if stored.expires_at else None,
            },
        )
        self.audit_logger.log_activation(
            office_id=office_id,
            feature_group_id=group.id,
            token_id=stored.token_id,
            expires_at=stored.expires_at,
            actor_id=actor_id,
        )
        return stored

    def deactivate_feature_group(
        self,
        office_id: str,
        feature_group_id: str,
        actor_id: Optional[str] = None,
    ) -> bool:
        """
        Flip is_active off for a grant. The row is kept.

        Returns:
            True if an active grant was deactivated, False if there was
            nothing to deactivate
        """
        existing = self.gateway.get_office_feature_group(office_id, feature_group_id)
        if existing is None or not existing.is_active:
            return False

        self.gateway.upsert_office_feature_group(replace(existing, is_active=False))
        logger.info(
            "Feature group deactivated",
            extra={"office_id": office_id, "feature_group_id": feature_group_id},
        )
        self.audit_logger.log_deactivation(office_id, feature_group_id, actor_id=actor_id)
        return True

    def deactivate_expired(self, now: Optional[datetime] = None) -> int:
        """
        Flip is_active off on grants whose expires_at has passed.

        Housekeeping only: expired grants are already denied lazily.

        Returns:
            Number of grants deactivated
        """
        now = ensure_utc(now) or utcnow()
        count = 0
        for grant in self.gateway.list_expired_grants(now):
            self.gateway.upsert_office_feature_group(replace(grant, is_active=False))
            self.audit_logger.log_deactivation(
                grant.office_id,
                grant.feature_group_id,
                action=EntitlementAuditLogger.ACTION_EXPIRED,
            )
            count += 1

        if count:
            logger.info("Deactivated expired feature groups", extra={"count": count})
        return count
