"""
Role-Based Access Control (RBAC) permission resolution.

Effective permissions = role defaults ∪ recognised grants − bans.

CRITICAL SECURITY REQUIREMENTS:
- Bans always win, over explicit grants and over role defaults
- Unknown roles resolve to no defaults (fail closed, not an error)
- Unknown grant strings are dropped, never errors (they may come from stale rows)
- Pure functions of the principal: no I/O, safe for concurrent reuse

Usage:
    from office_access.platform.rbac import authorize, resolve_permissions

    if not authorize(principal, {Permission.CREATE_OFFICE}):
        ...
"""

import logging
from typing import FrozenSet, Iterable, Optional

from office_access.constants.permissions import Permission, get_permissions_for_role
from office_access.platform.errors import UnauthenticatedError
from office_access.platform.principal import Principal

logger = logging.getLogger(__name__)


def _recognised(values: Iterable[str]) -> set[Permission]:
    permissions: set[Permission] = set()
    for value in values:
        permission = Permission.from_value(value)
        if permission is None:
            logger.debug("Dropping unknown permission string", extra={"permission": value})
            continue
        permissions.add(permission)
    return permissions


def resolve_permissions(principal: Principal) -> FrozenSet[Permission]:
    """
    Compute a principal's effective permission set.

    Args:
        principal: The resolved principal for the request

    Returns:
        Frozen set of effective permissions (ordering irrelevant)
    """
    effective = set(get_permissions_for_role(principal.role))
    effective |= _recognised(principal.granted_permissions)
    banned = _recognised(principal.banned_permissions)
    return frozenset(effective - banned)


def authorize(
    principal: Optional[Principal],
    required: Optional[Iterable[Permission]],
) -> bool:
    """
    Check that a principal holds every required permission.

    An empty requirement always authorizes.

    Raises:
        UnauthenticatedError: If no principal was supplied
    """
    if principal is None:
        raise UnauthenticatedError()

    required_set = set(required or ())
    if not required_set:
        return True

    return required_set.issubset(resolve_permissions(principal))


def has_permission(principal: Principal, permission: Permission) -> bool:
    """Check a single permission."""
    return permission in resolve_permissions(principal)


def has_any_permission(principal: Principal, permissions: Iterable[Permission]) -> bool:
    """Check that at least one of the permissions is held."""
    effective = resolve_permissions(principal)
    return any(p in effective for p in permissions)


def has_role(principal: Principal, roles: Iterable[str]) -> bool:
    """
    Check the principal's role against a declared role set.

    Comparison is case-insensitive so "admin" and "ADMIN" match.
    """
    own = (principal.role or "").upper()
    if not own:
        return False
    return any(own == str(getattr(r, "value", r)).upper() for r in roles)
