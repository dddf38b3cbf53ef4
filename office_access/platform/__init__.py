"""
Platform-level modules for access control.

- principal: the authenticated actor
- rbac: effective permission resolution
- scope: hierarchical admin scope filtering
- errors: error taxonomy
- authorization: the per-request authorization pipeline
"""

from office_access.platform.errors import (
    AccessControlError,
    ConfigurationError,
    DenialReason,
    ForbiddenError,
    NotRegisteredError,
    TargetNotCallableError,
    UnauthenticatedError,
)
from office_access.platform.principal import Principal
from office_access.platform.rbac import authorize, resolve_permissions
from office_access.platform.scope import (
    AdminScope,
    FilterPredicate,
    InvalidAdminScopeError,
    PredicateKind,
    predicate_for,
    predicate_for_principal,
)

__all__ = [
    "AccessControlError",
    "ConfigurationError",
    "DenialReason",
    "ForbiddenError",
    "NotRegisteredError",
    "TargetNotCallableError",
    "UnauthenticatedError",
    "Principal",
    "authorize",
    "resolve_permissions",
    "AdminScope",
    "FilterPredicate",
    "InvalidAdminScopeError",
    "PredicateKind",
    "predicate_for",
    "predicate_for_principal",
]
