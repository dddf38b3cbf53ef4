"""
Canonical permissions matrix for office access control.

IMPORTANT: This is the single source of truth for all permissions.
All permission checks MUST reference these constants.

Role Hierarchy (lowest to highest):
- USER < MANAGER < CITY_ADMIN < STATE_ADMIN < COUNTRY_ADMIN < ADMIN

Hierarchical admin roles (CITY_ADMIN, STATE_ADMIN, COUNTRY_ADMIN) are
geographically scoped: every query they issue is constrained by the
FilterPredicate derived from their admin scope.
"""

from enum import Enum
from typing import FrozenSet, Iterable, Optional


class Role(str, Enum):
    """
    User roles.

    Stored upper-case on user rows. Lookups are case-insensitive so that
    lower-case role names from older tokens keep resolving.
    """
    USER = "USER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"

    # Hierarchical admin roles (geographically scoped)
    CITY_ADMIN = "CITY_ADMIN"
    STATE_ADMIN = "STATE_ADMIN"
    COUNTRY_ADMIN = "COUNTRY_ADMIN"

    @classmethod
    def from_value(cls, value: Optional[str]) -> Optional["Role"]:
        """Resolve a role name case-insensitively. Unknown names return None."""
        if not value:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class Permission(str, Enum):
    """
    All permissions in the system.

    Values are globally unique and persisted as plain strings in the
    user grant/ban columns.
    """
    # Office management
    CREATE_OFFICE = "create_office"
    UPDATE_OFFICE = "update_office"
    DELETE_OFFICE = "delete_office"
    VIEW_OFFICE = "view_office"

    # Manager assignment
    ASSIGN_MANAGER = "assign_manager"
    REMOVE_MANAGER = "remove_manager"

    # Reports & analytics
    VIEW_REPORTS = "view_reports"
    EXPORT_REPORTS = "export_reports"

    # User management
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    VIEW_USER = "view_user"

    # Office types
    MANAGE_OFFICE_TYPES = "manage_office_types"

    # Location management
    MANAGE_LOCATIONS = "manage_locations"

    # Hierarchical admin management
    ASSIGN_CITY_ADMIN = "assign_city_admin"
    ASSIGN_STATE_ADMIN = "assign_state_admin"
    ASSIGN_COUNTRY_ADMIN = "assign_country_admin"
    MANAGE_HIERARCHICAL_ADMINS = "manage_hierarchical_admins"

    # Scope-limited permissions
    VIEW_SCOPE_OFFICES = "view_scope_offices"
    MANAGE_SCOPE_OFFICES = "manage_scope_offices"
    VIEW_SCOPE_USERS = "view_scope_users"
    MANAGE_SCOPE_USERS = "manage_scope_users"

    @classmethod
    def from_value(cls, value: Optional[str]) -> Optional["Permission"]:
        """Resolve a stored permission string. Unknown strings return None."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


# Permission matrix: Role -> default Permissions
# Roles absent from this table (or mapped to an empty set) get no defaults.
ROLE_PERMISSIONS: dict[Role, FrozenSet[Permission]] = {
    Role.USER: frozenset(),

    Role.MANAGER: frozenset([
        Permission.VIEW_OFFICE,
        Permission.UPDATE_OFFICE,
        Permission.VIEW_REPORTS,
        Permission.EXPORT_REPORTS,
        Permission.VIEW_USER,
        Permission.CREATE_USER,
        Permission.UPDATE_USER,
    ]),

    # Admin holds every permission
    Role.ADMIN: frozenset(Permission),

    Role.COUNTRY_ADMIN: frozenset([
        Permission.VIEW_OFFICE,
        Permission.VIEW_USER,
        Permission.VIEW_REPORTS,
        Permission.ASSIGN_STATE_ADMIN,
        Permission.ASSIGN_CITY_ADMIN,
        Permission.VIEW_SCOPE_OFFICES,
        Permission.MANAGE_SCOPE_OFFICES,
        Permission.VIEW_SCOPE_USERS,
        Permission.MANAGE_SCOPE_USERS,
    ]),

    Role.STATE_ADMIN: frozenset([
        Permission.VIEW_OFFICE,
        Permission.VIEW_USER,
        Permission.VIEW_REPORTS,
        Permission.ASSIGN_CITY_ADMIN,
        Permission.VIEW_SCOPE_OFFICES,
        Permission.MANAGE_SCOPE_OFFICES,
        Permission.VIEW_SCOPE_USERS,
        Permission.MANAGE_SCOPE_USERS,
    ]),

    Role.CITY_ADMIN: frozenset([
        Permission.VIEW_OFFICE,
        Permission.VIEW_USER,
        Permission.VIEW_REPORTS,
        Permission.VIEW_SCOPE_OFFICES,
        Permission.MANAGE_SCOPE_OFFICES,
        Permission.VIEW_SCOPE_USERS,
    ]),
}


HIERARCHICAL_ADMIN_ROLES: FrozenSet[Role] = frozenset([
    Role.CITY_ADMIN,
    Role.STATE_ADMIN,
    Role.COUNTRY_ADMIN,
])


# Rank used for "equal or higher" comparisons between roles
ROLE_HIERARCHY: dict[Role, int] = {
    Role.USER: 0,
    Role.MANAGER: 1,
    Role.CITY_ADMIN: 2,
    Role.STATE_ADMIN: 3,
    Role.COUNTRY_ADMIN: 4,
    Role.ADMIN: 5,
}


# Which hierarchical roles each role may hand out
ASSIGNABLE_ROLES: dict[Role, FrozenSet[Role]] = {
    Role.ADMIN: frozenset([Role.CITY_ADMIN, Role.STATE_ADMIN, Role.COUNTRY_ADMIN]),
    Role.COUNTRY_ADMIN: frozenset([Role.CITY_ADMIN, Role.STATE_ADMIN]),
    Role.STATE_ADMIN: frozenset([Role.CITY_ADMIN]),
}


def get_permissions_for_role(role_name: Optional[str]) -> FrozenSet[Permission]:
    """
    Get the default permissions for a role name.

    Unknown roles get an empty set (fail closed, not an error).
    """
    role = Role.from_value(role_name)
    if role is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(role, frozenset())


def role_has_permission(role_name: Optional[str], permission: Permission) -> bool:
    """Check whether a role's defaults include a permission."""
    return permission in get_permissions_for_role(role_name)


def is_hierarchical_admin(role_name: Optional[str]) -> bool:
    """True for CITY_ADMIN, STATE_ADMIN and COUNTRY_ADMIN only."""
    return Role.from_value(role_name) in HIERARCHICAL_ADMIN_ROLES


def can_assign_role(actor_role: Optional[str], target_role: Optional[str]) -> bool:
    """
    Check if an actor may assign a hierarchical admin role.

    Args:
        actor_role: Role name of the user performing the assignment
        target_role: Role name being assigned

    Returns:
        True if actor_role is allowed to hand out target_role
    """
    actor = Role.from_value(actor_role)
    target = Role.from_value(target_role)
    if actor is None or target is None:
        return False
    return target in ASSIGNABLE_ROLES.get(actor, frozenset())


def has_equal_or_higher_role(target_role: Optional[str], actor_role: Optional[str]) -> bool:
    """
    Check if target_role ranks at or above actor_role.

    Unknown roles are treated as outranking everyone so that callers
    refusing "equal or higher" targets refuse them too.
    """
    target = Role.from_value(target_role)
    actor = Role.from_value(actor_role)
    if target is None:
        return True
    if actor is None:
        return True
    return ROLE_HIERARCHY[target] >= ROLE_HIERARCHY[actor]


def validate_permission_strings(values: Iterable[str]) -> FrozenSet[Permission]:
    """
    Validate permission strings before they are written to a user row.

    Args:
        values: Permission strings submitted for a grant or ban list

    Returns:
        The parsed permissions

    Raises:
        ValueError: If any string is not a known permission
    """
    parsed: set[Permission] = set()
    unknown: list[str] = []
    for value in values:
        permission = Permission.from_value(value)
        if permission is None:
            unknown.append(str(value))
        else:
            parsed.add(permission)
    if unknown:
        raise ValueError(f"Unknown permissions: {', '.join(sorted(unknown))}")
    return frozenset(parsed)
