"""
Hierarchical geographic scope filtering for admin roles.

Hierarchical admins (CITY_ADMIN, STATE_ADMIN, COUNTRY_ADMIN) carry an
admin scope naming the country / state / city subtree they may see.
This module turns that scope into a FilterPredicate that the data-access
layer applies to its queries. It never issues queries itself.

CRITICAL: Malformed scope data is fail-CLOSED. A scoped principal whose
scope cannot be parsed gets a MATCH_NOTHING predicate, never UNRESTRICTED.

Usage:
    from office_access.platform.scope import predicate_for_principal

    predicate = predicate_for_principal(principal.role, principal.admin_scope)
    offices = predicate.apply(db.query(Office), Office).all()
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Union

from sqlalchemy import and_, false, true
from sqlalchemy.sql.elements import ColumnElement

from office_access.constants.permissions import Role, is_hierarchical_admin

logger = logging.getLogger(__name__)

ScopeId = Union[int, str]


class InvalidAdminScopeError(ValueError):
    """Raised when admin scope data is missing fields or cannot be parsed."""
    pass


class ScopeLevel(str, Enum):
    """Depth of an admin scope in the country > state > city hierarchy."""
    COUNTRY = "country"
    STATE = "state"
    CITY = "city"


# Scope level each hierarchical role is expected to carry
ROLE_SCOPE_LEVELS: dict[Role, ScopeLevel] = {
    Role.COUNTRY_ADMIN: ScopeLevel.COUNTRY,
    Role.STATE_ADMIN: ScopeLevel.STATE,
    Role.CITY_ADMIN: ScopeLevel.CITY,
}


def _normalize_id(value: Any) -> Optional[ScopeId]:
    """
    Normalize a location identifier.

    Integers and numeric strings become int so that "5" and 5 compare
    equal; other non-empty strings are kept as-is.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidAdminScopeError(f"Invalid location id: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        if stripped.lstrip("-").isdigit():
            return int(stripped)
        return stripped
    raise InvalidAdminScopeError(f"Invalid location id: {value!r}")


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


@dataclass(frozen=True)
class AdminScope:
    """
    Parsed, validated admin scope.

    Invariants:
    - every level requires country_id
    - STATE requires state_id, CITY requires state_id and city_id
    - COUNTRY must not carry state_id / city_id, STATE must not carry city_id
    """
    level: ScopeLevel
    country_id: ScopeId
    state_id: Optional[ScopeId] = None
    city_id: Optional[ScopeId] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[str] = None

    def __post_init__(self):
        if self.country_id is None:
            raise InvalidAdminScopeError("Admin scope requires country_id")
        if self.level == ScopeLevel.COUNTRY:
            if self.state_id is not None or self.city_id is not None:
                raise InvalidAdminScopeError(
                    "Country scope must not carry state_id or city_id"
                )
        elif self.level == ScopeLevel.STATE:
            if self.state_id is None:
                raise InvalidAdminScopeError("State scope requires state_id")
            if self.city_id is not None:
                raise InvalidAdminScopeError("State scope must not carry city_id")
        elif self.level == ScopeLevel.CITY:
            if self.state_id is None or self.city_id is None:
                raise InvalidAdminScopeError(
                    "City scope requires state_id and city_id"
                )

    @classmethod
    def parse(cls, raw: Union["AdminScope", str, Mapping[str, Any], None]) -> "AdminScope":
        """
        Parse admin scope data as stored on user rows.

        Accepts an AdminScope, a JSON string, or a mapping using either
        camelCase (countryId) or snake_case (country_id) keys.

        Raises:
            InvalidAdminScopeError: If the data is missing, malformed or
                violates the level invariants
        """
        if isinstance(raw, AdminScope):
            return raw
        if raw is None:
            raise InvalidAdminScopeError("Admin scope is missing")

        data: Any = raw
        if isinstance(raw, (str, bytes)):
            try:
                data = json.loads(raw)
            except ValueError as exc:
                raise InvalidAdminScopeError(f"Admin scope is not valid JSON: {exc}")

        if not isinstance(data, Mapping):
            raise InvalidAdminScopeError("Admin scope must be an object")

        try:
            level = ScopeLevel(str(data.get("level", "")).lower())
        except ValueError:
            raise InvalidAdminScopeError(f"Unknown scope level: {data.get('level')!r}")

        assigned_at = _pick(data, "assignedAt", "assigned_at")
        if isinstance(assigned_at, datetime):
            assigned_at = assigned_at.isoformat()

        return cls(
            level=level,
            country_id=_normalize_id(_pick(data, "countryId", "country_id")),
            state_id=_normalize_id(_pick(data, "stateId", "state_id")),
            city_id=_normalize_id(_pick(data, "cityId", "city_id")),
            assigned_by=_pick(data, "assignedBy", "assigned_by"),
            assigned_at=assigned_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "countryId": self.country_id,
            "stateId": self.state_id,
            "cityId": self.city_id,
            "assignedBy": self.assigned_by,
            "assignedAt": self.assigned_at,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class PredicateKind(str, Enum):
    """Shape of a data-visibility predicate."""
    UNRESTRICTED = "unrestricted"
    BY_COUNTRY = "by_country"
    BY_COUNTRY_STATE = "by_country_state"
    BY_COUNTRY_STATE_CITY = "by_country_state_city"
    MATCH_NOTHING = "match_nothing"


@dataclass(frozen=True)
class FilterPredicate:
    """
    Data-visibility predicate handed to the data-access layer.

    Immutable and per-request; never shared across concurrent requests.
    """
    kind: PredicateKind
    country_id: Optional[ScopeId] = None
    state_id: Optional[ScopeId] = None
    city_id: Optional[ScopeId] = None

    @classmethod
    def unrestricted(cls) -> "FilterPredicate":
        return cls(PredicateKind.UNRESTRICTED)

    @classmethod
    def match_nothing(cls) -> "FilterPredicate":
        return cls(PredicateKind.MATCH_NOTHING)

    @classmethod
    def by_country(cls, country_id: ScopeId) -> "FilterPredicate":
        return cls(PredicateKind.BY_COUNTRY, country_id=country_id)

    @classmethod
    def by_country_state(cls, country_id: ScopeId, state_id: ScopeId) -> "FilterPredicate":
        return cls(PredicateKind.BY_COUNTRY_STATE, country_id=country_id, state_id=state_id)

    @classmethod
    def by_country_state_city(
        cls,
        country_id: ScopeId,
        state_id: ScopeId,
        city_id: ScopeId,
    ) -> "FilterPredicate":
        return cls(
            PredicateKind.BY_COUNTRY_STATE_CITY,
            country_id=country_id,
            state_id=state_id,
            city_id=city_id,
        )

    @property
    def is_restricted(self) -> bool:
        return self.kind != PredicateKind.UNRESTRICTED

    def matches(self, record: Any) -> bool:
        """
        Evaluate the predicate against a single record.

        Args:
            record: Mapping or object exposing country_id / state_id /
                city_id (camelCase keys are accepted for mappings)

        Returns:
            True if the record is visible under this predicate
        """
        if self.kind == PredicateKind.UNRESTRICTED:
            return True
        if self.kind == PredicateKind.MATCH_NOTHING:
            return False

        try:
            country = _normalize_id(_read_field(record, "country_id", "countryId"))
            state = _normalize_id(_read_field(record, "state_id", "stateId"))
            city = _normalize_id(_read_field(record, "city_id", "cityId"))
        except InvalidAdminScopeError:
            return False

        if country is None or country != self.country_id:
            return False
        if self.kind == PredicateKind.BY_COUNTRY:
            return True
        if state is None or state != self.state_id:
            return False
        if self.kind == PredicateKind.BY_COUNTRY_STATE:
            return True
        return city is not None and city == self.city_id

    def to_clause(
        self,
        country_column: Any,
        state_column: Any = None,
        city_column: Any = None,
    ) -> ColumnElement:
        """
        Build a SQLAlchemy WHERE clause for this predicate.

        Raises:
            ValueError: If the predicate needs a column that was not supplied
        """
        if self.kind == PredicateKind.UNRESTRICTED:
            return true()
        if self.kind == PredicateKind.MATCH_NOTHING:
            return false()

        conditions = [country_column == self.country_id]
        if self.kind in (PredicateKind.BY_COUNTRY_STATE, PredicateKind.BY_COUNTRY_STATE_CITY):
            if state_column is None:
                raise ValueError(f"{self.kind.value} predicate requires a state column")
            conditions.append(state_column == self.state_id)
        if self.kind == PredicateKind.BY_COUNTRY_STATE_CITY:
            if city_column is None:
                raise ValueError(f"{self.kind.value} predicate requires a city column")
            conditions.append(city_column == self.city_id)
        return and_(*conditions)

    def apply(self, query, model):
        """
        Constrain a SQLAlchemy query on a model with country_id / state_id /
        city_id columns.
        """
        return query.filter(
            self.to_clause(
                getattr(model, "country_id"),
                getattr(model, "state_id", None),
                getattr(model, "city_id", None),
            )
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "country_id": self.country_id,
            "state_id": self.state_id,
            "city_id": self.city_id,
        }


def _read_field(record: Any, *names: str) -> Any:
    if isinstance(record, Mapping):
        return _pick(record, *names)
    for name in names:
        if hasattr(record, name):
            return getattr(record, name)
    return None


def is_scoped(role_name: Optional[str]) -> bool:
    """True for the three hierarchical admin roles only."""
    return is_hierarchical_admin(role_name)


def predicate_for(scope: AdminScope) -> FilterPredicate:
    """Map a parsed admin scope to its FilterPredicate."""
    if scope.level == ScopeLevel.COUNTRY:
        return FilterPredicate.by_country(scope.country_id)
    if scope.level == ScopeLevel.STATE:
        return FilterPredicate.by_country_state(scope.country_id, scope.state_id)
    return FilterPredicate.by_country_state_city(
        scope.country_id, scope.state_id, scope.city_id
    )


def predicate_for_principal(
    role_name: Optional[str],
    raw_scope: Union[AdminScope, str, Mapping[str, Any], None],
) -> FilterPredicate:
    """
    Compute the data-visibility predicate for a principal.

    - Unscoped roles → UNRESTRICTED
    - Scoped roles with a valid scope → BY_COUNTRY / BY_COUNTRY_STATE /
      BY_COUNTRY_STATE_CITY
    - Scoped roles with missing or malformed scope, or a scope whose level
      does not match the role → MATCH_NOTHING (fail-closed)
    """
    if not is_scoped(role_name):
        return FilterPredicate.unrestricted()

    try:
        scope = AdminScope.parse(raw_scope)
    except InvalidAdminScopeError as exc:
        logger.warning(
            "Malformed admin scope, denying all data",
            extra={"role": role_name, "error": str(exc)},
        )
        return FilterPredicate.match_nothing()

    expected_level = ROLE_SCOPE_LEVELS[Role.from_value(role_name)]
    if scope.level != expected_level:
        logger.warning(
            "Admin scope level does not match role, denying all data",
            extra={
                "role": role_name,
                "scope_level": scope.level.value,
                "expected_level": expected_level.value,
            },
        )
        return FilterPredicate.match_nothing()

    return predicate_for(scope)
