"""
Principal - the authenticated actor an authorization decision is made for.

Authentication happens upstream; this module only shapes the identity it
is handed (JWT claims or a user row) into an immutable value object.
"""

from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Union

from office_access.platform.scope import AdminScope


def _as_frozenset(values: Optional[Iterable[Any]]) -> FrozenSet[str]:
    if not values:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(getattr(v, "value", v) for v in values if v is not None)


@dataclass(frozen=True)
class Principal:
    """
    Immutable per-request identity.

    granted_permissions / banned_permissions hold raw strings as stored;
    unknown strings are tolerated here and dropped during resolution.
    admin_scope is kept raw (JSON string or mapping) and parsed by the
    scope filter, so malformed data is handled fail-closed there.
    """
    user_id: str
    role: str
    granted_permissions: FrozenSet[str] = field(default_factory=frozenset)
    banned_permissions: FrozenSet[str] = field(default_factory=frozenset)
    admin_scope: Union[AdminScope, str, Mapping[str, Any], None] = None
    office_id: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def build(
        cls,
        user_id: str,
        role: Any,
        granted_permissions: Optional[Iterable[Any]] = None,
        banned_permissions: Optional[Iterable[Any]] = None,
        admin_scope: Union[AdminScope, str, Mapping[str, Any], None] = None,
        office_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> "Principal":
        """Build a principal, normalising enum members and lists to strings / frozensets."""
        return cls(
            user_id=str(user_id),
            role=str(getattr(role, "value", role) or ""),
            granted_permissions=_as_frozenset(granted_permissions),
            banned_permissions=_as_frozenset(banned_permissions),
            admin_scope=admin_scope,
            office_id=str(office_id) if office_id is not None else None,
            email=email,
        )

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "Principal":
        """
        Build a principal from decoded token claims or a serialized user row.

        Accepts camelCase (bannedPermissions, adminScope, officeId) as well
        as snake_case keys. "permissions" is accepted for the grant list.
        """
        def pick(*keys: str) -> Any:
            for key in keys:
                if key in claims and claims[key] is not None:
                    return claims[key]
            return None

        user_id = pick("sub", "user_id", "userId", "id")
        if user_id is None:
            raise ValueError("Claims do not identify a user")

        return cls.build(
            user_id=user_id,
            role=pick("role") or "",
            granted_permissions=pick("granted_permissions", "grantedPermissions", "permissions"),
            banned_permissions=pick("banned_permissions", "bannedPermissions"),
            admin_scope=pick("admin_scope", "adminScope"),
            office_id=pick("office_id", "officeId"),
            email=pick("email"),
        )
