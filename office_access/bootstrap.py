"""
Composition root.

Owns the single FeatureRegistry for the process and wires the per-session
collaborators (gateway, evaluator, pipeline) around it.

Usage:
    access_control = AccessControl.from_settings(AccessSettings.from_env())
    access_control.registry.register("Create Office", "create_office", office_service)
    access_control.install(app)   # FastAPI: app.state.access_control

    pipeline = access_control.pipeline_for(db_session)
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from office_access.config.settings import AccessSettings
from office_access.entitlements.audit import EntitlementAuditLogger
from office_access.entitlements.gateway import SqlAlchemyEntitlementGateway
from office_access.entitlements.service import EntitlementEvaluator
from office_access.entitlements.token_verification import HttpTokenVerifier, TokenVerifier
from office_access.features.registry import FeatureRegistry
from office_access.platform.authorization import AuthorizationPipeline

logger = logging.getLogger(__name__)


class AccessControl:
    """Process-wide access-control wiring. Create exactly one per process."""

    def __init__(
        self,
        registry: Optional[FeatureRegistry] = None,
        audit_logger: Optional[EntitlementAuditLogger] = None,
        token_verifier: Optional[TokenVerifier] = None,
        settings: Optional[AccessSettings] = None,
    ):
        self.registry = registry or FeatureRegistry()
        self.audit_logger = audit_logger or EntitlementAuditLogger()
        self.token_verifier = token_verifier
        self.settings = settings or AccessSettings()

    @classmethod
    def from_settings(cls, settings: AccessSettings) -> "AccessControl":
        token_verifier = None
        if settings.token_verification_enabled:
            token_verifier = HttpTokenVerifier(
                api_url=settings.token_verification_api_url,
                api_key=settings.token_verification_api_key or None,
                timeout_seconds=settings.token_verification_timeout_seconds,
            )
        else:
            logger.info("Token verification disabled, paid activations use local tokens only")
        return cls(token_verifier=token_verifier, settings=settings)

    def evaluator_for(self, db_session: Session) -> EntitlementEvaluator:
        return EntitlementEvaluator(
            gateway=SqlAlchemyEntitlementGateway(db_session),
            registry=self.registry,
            audit_logger=self.audit_logger,
            token_verifier=self.token_verifier,
        )

    def pipeline_for(self, db_session: Session) -> AuthorizationPipeline:
        return AuthorizationPipeline(self.evaluator_for(db_session), self.audit_logger)

    def install(self, app) -> None:
        """Expose this instance to FastAPI dependencies via app.state."""
        app.state.access_control = self
