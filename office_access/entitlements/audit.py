"""
Entitlement Audit Logger - Log access denials and grant lifecycle changes.

Provides:
- AccessDenialEvent: Structured event for a pipeline denial
- EntitlementChangeEvent: Structured event for activation / deactivation
- EntitlementAuditLogger: writes one JSON line per event to the
  "office_access.audit" logger

CRITICAL: Audit logging must never break the request it describes.
Serialization or handler failures are reported on the module logger and
swallowed.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Dedicated audit logger for structured logging
audit_logger = logging.getLogger("office_access.audit")


@dataclass
class AccessDenialEvent:
    """Structured event for an access denial."""

    reason: str
    stage: str
    user_id: Optional[str] = None
    role: Optional[str] = None
    office_id: Optional[str] = None
    feature_name: Optional[str] = None
    operation_name: Optional[str] = None
    message: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    extra_metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class EntitlementChangeEvent:
    """Structured event for a feature group activation or deactivation."""

    action: str
    office_id: str
    feature_group_id: str
    token_id: Optional[str] = None
    expires_at: Optional[str] = None
    actor_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class EntitlementAuditLogger:
    """
    Writes audit events to the structured audit logger.

    Instances are stateless; one may be shared across threads.
    """

    ACTION_ACTIVATED = "activated"
    ACTION_DEACTIVATED = "deactivated"
    ACTION_EXPIRED = "expired"

    def _emit(self, event_type: str, payload) -> None:
        try:
            audit_logger.info(
                payload.to_json(),
                extra={"event_type": event_type, "audit_data": payload.to_dict()},
            )
        except Exception:
            logger.error("Failed to write audit event", extra={"event_type": event_type}, exc_info=True)

    def log_denial(self, event: AccessDenialEvent) -> None:
        self._emit("access_denied", event)

    def log_change(self, event: EntitlementChangeEvent) -> None:
        self._emit(f"entitlement_{event.action}", event)

    def log_activation(
        self,
        office_id: str,
        feature_group_id: str,
        token_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> None:
        self.log_change(
            EntitlementChangeEvent(
                action=self.ACTION_ACTIVATED,
                office_id=office_id,
                feature_group_id=feature_group_id,
                token_id=token_id,
                expires_at=expires_at.isoformat() if expires_at else None,
                actor_id=actor_id,
            )
        )

    def log_deactivation(
        self,
        office_id: str,
        feature_group_id: str,
        action: str = ACTION_DEACTIVATED,
        actor_id: Optional[str] = None,
    ) -> None:
        self.log_change(
            EntitlementChangeEvent(
                action=action,
                office_id=office_id,
                feature_group_id=feature_group_id,
                actor_id=actor_id,
            )
        )
