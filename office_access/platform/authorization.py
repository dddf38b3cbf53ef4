"""
Authorization Pipeline - one decision per inbound operation.

Stages run in a fixed order and short-circuit on the first denial:

1. IDENTITY         public operations skip to SCOPE; otherwise a principal
                    is required (UnauthenticatedError)
2. ROLE             case-insensitive match against declared roles
3. PERMISSION       Permission Resolver authorize()
   ROLE_ASSIGNMENT  actor may assign the body's target role (opt-in)
4. SCOPE            attach the principal's FilterPredicate; optionally
                    check path parameters against it (opt-in)
5. FEATURE          resolve the office id, then ask the Entitlement
                    Evaluator about the declared feature group or
                    granular feature

CRITICAL: Stages never raise. A denial is returned as a PipelineDecision
carrying the error; callers that prefer exceptions call
raise_for_denial(). A denial is never downgraded to an allow, and
decisions are never retried.

Usage:
    pipeline = AuthorizationPipeline(evaluator)
    decision = pipeline.authorize_request(
        principal,
        OperationRequirements.build(permissions=[Permission.CREATE_OFFICE],
                                    feature_group="Office Management"),
        RequestContext(query=request.query_params),
    )
    decision.raise_for_denial()
    offices = decision.filter_predicate.apply(db.query(Office), Office)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple

from office_access.constants.permissions import Permission, can_assign_role
from office_access.entitlements.audit import AccessDenialEvent, EntitlementAuditLogger
from office_access.entitlements.service import EntitlementEvaluator
from office_access.platform import rbac
from office_access.platform.errors import (
    AccessControlError,
    ConfigurationError,
    DenialReason,
    ForbiddenError,
    UnauthenticatedError,
)
from office_access.platform.principal import Principal
from office_access.platform.scope import FilterPredicate, is_scoped, predicate_for_principal

logger = logging.getLogger(__name__)

# Lookup keys for the office identifier, per context source
OFFICE_ID_KEYS = ("officeId", "office_id")


# ---------------------------------------------------------------------------
# Declared requirements and request context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OperationRequirements:
    """
    Static, per-operation access metadata.

    Built once when routes are declared; never derived from request data.
    """
    public: bool = False
    roles: FrozenSet[str] = frozenset()
    permissions: FrozenSet[Permission] = frozenset()
    feature_group: Optional[str] = None
    granular_feature: Optional[Tuple[str, str]] = None
    enforce_path_scope: bool = False
    hierarchical_assignment: bool = False

    @classmethod
    def build(
        cls,
        public: bool = False,
        roles: Optional[Iterable[Any]] = None,
        permissions: Optional[Iterable[Any]] = None,
        feature_group: Optional[str] = None,
        granular_feature: Optional[Tuple[str, str]] = None,
        enforce_path_scope: bool = False,
        hierarchical_assignment: bool = False,
    ) -> "OperationRequirements":
        """
        Normalise roles to upper-case names and permissions to enum members.

        Raises:
            ValueError: If a declared permission is not a known Permission,
                or granular_feature is not a (feature, operation) pair
        """
        resolved_permissions = set()
        for value in _as_values(permissions):
            permission = Permission.from_value(getattr(value, "value", value))
            if permission is None:
                raise ValueError(f"Unknown permission in requirements: {value!r}")
            resolved_permissions.add(permission)

        if granular_feature is not None:
            if (
                isinstance(granular_feature, str)
                or len(granular_feature) != 2
                or not all(isinstance(part, str) and part for part in granular_feature)
            ):
                raise ValueError(
                    f"granular_feature must be a (feature, operation) pair: {granular_feature!r}"
                )
            granular_feature = tuple(granular_feature)

        return cls(
            public=public,
            roles=frozenset(str(getattr(r, "value", r)).upper() for r in _as_values(roles)),
            permissions=frozenset(resolved_permissions),
            feature_group=feature_group,
            granular_feature=granular_feature,
            enforce_path_scope=enforce_path_scope,
            hierarchical_assignment=hierarchical_assignment,
        )

    @property
    def requires_feature(self) -> bool:
        return self.feature_group is not None or self.granular_feature is not None


@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request the pipeline may read."""
    query: Mapping[str, Any] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)
    path: Mapping[str, Any] = field(default_factory=dict)


def _as_values(values: Optional[Iterable[Any]]) -> Tuple[Any, ...]:
    """A single role or permission is accepted in place of a collection."""
    if not values:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(values)


def _first_present(source: Optional[Mapping[str, Any]], keys: Iterable[str]) -> Optional[str]:
    if not source:
        return None
    for key in keys:
        value = source.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def resolve_office_id(
    principal: Optional[Principal],
    context: RequestContext,
) -> Optional[str]:
    """
    Find the office an operation targets.

    Priority: query parameter, body field, path parameter, principal's
    own office. First present wins.
    """
    for source in (context.query, context.body, context.path):
        office_id = _first_present(source, OFFICE_ID_KEYS)
        if office_id is not None:
            return office_id
    if principal is not None and principal.office_id:
        return principal.office_id
    return None


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

class PipelineStage(str, Enum):
    IDENTITY = "identity"
    ROLE = "role"
    PERMISSION = "permission"
    ROLE_ASSIGNMENT = "role_assignment"
    SCOPE = "scope"
    FEATURE = "feature"
    COMPLETE = "complete"


@dataclass(frozen=True)
class PipelineDecision:
    """
    Terminal state of the pipeline: Allowed, or Denied with an error.

    stage is the stage that denied, or COMPLETE when allowed.
    """
    allowed: bool
    stage: PipelineStage
    error: Optional[AccessControlError] = None
    filter_predicate: FilterPredicate = field(default_factory=FilterPredicate.match_nothing)
    office_id: Optional[str] = None

    @classmethod
    def allow(
        cls,
        filter_predicate: FilterPredicate,
        office_id: Optional[str] = None,
    ) -> "PipelineDecision":
        return cls(
            allowed=True,
            stage=PipelineStage.COMPLETE,
            filter_predicate=filter_predicate,
            office_id=office_id,
        )

    @classmethod
    def deny(
        cls,
        stage: PipelineStage,
        error: AccessControlError,
        office_id: Optional[str] = None,
    ) -> "PipelineDecision":
        return cls(allowed=False, stage=stage, error=error, office_id=office_id)

    @property
    def reason(self) -> Optional[DenialReason]:
        if isinstance(self.error, ForbiddenError):
            return self.error.reason
        return None

    def raise_for_denial(self) -> None:
        if not self.allowed and self.error is not None:
            raise self.error


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class AuthorizationPipeline:
    """
    Composes the Permission Resolver, Scope Filter and Entitlement
    Evaluator into the per-request decision.

    Holds no per-request state; one instance may serve one request scope
    (it shares the evaluator's gateway / session).
    """

    def __init__(
        self,
        evaluator: EntitlementEvaluator,
        audit_logger: Optional[EntitlementAuditLogger] = None,
    ):
        self.evaluator = evaluator
        self.audit_logger = audit_logger or evaluator.audit_logger

    def authorize_request(
        self,
        principal: Optional[Principal],
        requirements: OperationRequirements,
        context: Optional[RequestContext] = None,
    ) -> PipelineDecision:
        """
        Run every stage for one operation.

        Returns:
            PipelineDecision; allowed decisions carry the FilterPredicate
            the data-access layer must apply
        """
        context = context or RequestContext()

        if not requirements.public:
            decision = (
                self._identity_stage(principal)
                or self._role_stage(principal, requirements)
                or self._permission_stage(principal, requirements)
                or self._role_assignment_stage(principal, requirements, context)
            )
            if decision is not None:
                return self._record_denial(principal, requirements, decision)

        predicate, decision = self._scope_stage(principal, requirements, context)
        if decision is not None:
            return self._record_denial(principal, requirements, decision)

        office_id, decision = self._feature_stage(principal, requirements, context)
        if decision is not None:
            return self._record_denial(principal, requirements, decision)

        logger.debug(
            "Request authorized",
            extra={
                "user_id": principal.user_id if principal else None,
                "office_id": office_id,
                "predicate": predicate.kind.value,
            },
        )
        return PipelineDecision.allow(predicate, office_id)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _identity_stage(self, principal: Optional[Principal]) -> Optional[PipelineDecision]:
        if principal is None:
            return PipelineDecision.deny(PipelineStage.IDENTITY, UnauthenticatedError())
        return None

    def _role_stage(
        self, principal: Principal, requirements: OperationRequirements
    ) -> Optional[PipelineDecision]:
        if not requirements.roles:
            return None
        if rbac.has_role(principal, requirements.roles):
            return None
        return PipelineDecision.deny(
            PipelineStage.ROLE,
            ForbiddenError(
                DenialReason.ROLE,
                "Your role does not allow this action",
                {"role": principal.role, "required_roles": sorted(requirements.roles)},
            ),
        )

    def _permission_stage(
        self, principal: Principal, requirements: OperationRequirements
    ) -> Optional[PipelineDecision]:
        if rbac.authorize(principal, requirements.permissions):
            return None
        missing = requirements.permissions - rbac.resolve_permissions(principal)
        return PipelineDecision.deny(
            PipelineStage.PERMISSION,
            ForbiddenError(
                DenialReason.PERMISSION,
                "Insufficient permissions",
                {"missing_permissions": sorted(p.value for p in missing)},
            ),
        )

    def _role_assignment_stage(
        self,
        principal: Principal,
        requirements: OperationRequirements,
        context: RequestContext,
    ) -> Optional[PipelineDecision]:
        if not requirements.hierarchical_assignment:
            return None
        target_role = (context.body or {}).get("role")
        if not target_role:
            return PipelineDecision.deny(
                PipelineStage.ROLE_ASSIGNMENT,
                ForbiddenError(DenialReason.ROLE_ASSIGNMENT, "Target role is required"),
            )
        if can_assign_role(principal.role, str(target_role)):
            return None
        return PipelineDecision.deny(
            PipelineStage.ROLE_ASSIGNMENT,
            ForbiddenError(
                DenialReason.ROLE_ASSIGNMENT,
                f"You do not have permission to assign {target_role} role",
                {"role": principal.role, "target_role": str(target_role)},
            ),
        )

    def _scope_stage(
        self,
        principal: Optional[Principal],
        requirements: OperationRequirements,
        context: RequestContext,
    ) -> Tuple[FilterPredicate, Optional[PipelineDecision]]:
        if principal is None or not is_scoped(principal.role):
            return FilterPredicate.unrestricted(), None

        predicate = predicate_for_principal(principal.role, principal.admin_scope)
        if requirements.enforce_path_scope and not predicate.matches(context.path or {}):
            return predicate, PipelineDecision.deny(
                PipelineStage.SCOPE,
                ForbiddenError(
                    DenialReason.SCOPE,
                    "Resource is outside your administrative scope",
                    {"predicate": predicate.to_dict()},
                ),
            )
        return predicate, None

    def _feature_stage(
        self,
        principal: Optional[Principal],
        requirements: OperationRequirements,
        context: RequestContext,
    ) -> Tuple[Optional[str], Optional[PipelineDecision]]:
        office_id = resolve_office_id(principal, context)
        if not requirements.requires_feature:
            return office_id, None

        if office_id is None:
            return None, PipelineDecision.deny(
                PipelineStage.FEATURE,
                ForbiddenError(
                    DenialReason.MISSING_OFFICE_ID,
                    "Office ID is required for feature access",
                ),
            )

        if requirements.feature_group is not None:
            if not self.evaluator.is_feature_group_active_for_office(
                office_id, requirements.feature_group
            ):
                return office_id, self._feature_denied(office_id, requirements.feature_group)

        if requirements.granular_feature is not None:
            feature_name, operation_name = requirements.granular_feature
            try:
                available = self.evaluator.is_granular_feature_available(
                    office_id, feature_name, operation_name
                )
            except ConfigurationError as e:
                return office_id, PipelineDecision.deny(PipelineStage.FEATURE, e, office_id)
            if not available:
                return office_id, self._feature_denied(office_id, feature_name)

        return office_id, None

    @staticmethod
    def _feature_denied(office_id: str, feature: str) -> PipelineDecision:
        return PipelineDecision.deny(
            PipelineStage.FEATURE,
            ForbiddenError(
                DenialReason.FEATURE_UNAVAILABLE,
                f"Feature '{feature}' is not available for this office",
                {"feature": feature, "office_id": office_id},
            ),
            office_id,
        )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _record_denial(
        self,
        principal: Optional[Principal],
        requirements: OperationRequirements,
        decision: PipelineDecision,
    ) -> PipelineDecision:
        error = decision.error
        reason = decision.reason.value if decision.reason else error.error_code
        feature_name, operation_name = requirements.granular_feature or (
            requirements.feature_group,
            None,
        )

        logger.warning(
            "Request denied",
            extra={
                "stage": decision.stage.value,
                "reason": reason,
                "user_id": principal.user_id if principal else None,
                "office_id": decision.office_id,
            },
        )
        self.audit_logger.log_denial(
            AccessDenialEvent(
                reason=reason,
                stage=decision.stage.value,
                user_id=principal.user_id if principal else None,
                role=principal.role if principal else None,
                office_id=decision.office_id,
                feature_name=feature_name,
                operation_name=operation_name,
                message=error.message,
            )
        )
        return decision
