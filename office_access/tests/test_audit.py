"""
Tests for the entitlement audit logger.
"""

import json
import logging
from unittest.mock import patch

from office_access.entitlements.audit import AccessDenialEvent, EntitlementAuditLogger

AUDIT = "office_access.audit"


def test_denial_is_written_as_json(caplog):
    event = AccessDenialEvent(reason="permission", stage="permission", user_id="u1", role="USER")

    with caplog.at_level(logging.INFO, logger=AUDIT):
        EntitlementAuditLogger().log_denial(event)

    record = caplog.records[-1]
    assert record.event_type == "access_denied"
    assert json.loads(record.getMessage())["reason"] == "permission"


def test_activation_event(caplog, t0):
    with caplog.at_level(logging.INFO, logger=AUDIT):
        EntitlementAuditLogger().log_activation("o1", "g1", token_id="t1", expires_at=t0, actor_id="u1")

    record = caplog.records[-1]
    assert record.event_type == "entitlement_activated"
    assert record.audit_data["expires_at"] == t0.isoformat()
    assert record.audit_data["actor_id"] == "u1"


def test_expiry_event(caplog):
    with caplog.at_level(logging.INFO, logger=AUDIT):
        EntitlementAuditLogger().log_deactivation(
            "o1", "g1", action=EntitlementAuditLogger.ACTION_EXPIRED
        )
    assert caplog.records[-1].event_type == "entitlement_expired"


def test_failures_are_swallowed(caplog):
    with patch("office_access.entitlements.audit.audit_logger") as broken:
        broken.info.side_effect = RuntimeError("handler down")
        EntitlementAuditLogger().log_deactivation("o1", "g1")

    assert "Failed to write audit event" in caplog.text
