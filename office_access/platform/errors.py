"""
Structured error classes for authorization and entitlement enforcement.

Every error carries a machine-readable error_code, the HTTP status the
request layer should answer with, and a to_dict() payload for JSON
responses.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import status


class DenialReason(str, Enum):
    """Why a principal was refused by the authorization pipeline."""
    ROLE = "role"
    PERMISSION = "permission"
    FEATURE_UNAVAILABLE = "feature_unavailable"
    MISSING_OFFICE_ID = "missing_office_id"
    SCOPE = "scope"
    ROLE_ASSIGNMENT = "role_assignment"


class AccessControlError(Exception):
    """Base exception for access control errors."""

    error_code = "access_control_error"
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class UnauthenticatedError(AccessControlError):
    """No principal was supplied for an operation that requires one."""

    error_code = "unauthenticated"
    http_status = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(AccessControlError):
    """A principal was present but is not allowed to perform the operation."""

    error_code = "forbidden"
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(
        self,
        reason: DenialReason,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.reason = reason
        super().__init__(
            message or "You do not have permission to perform this action",
            details,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["reason"] = self.reason.value
        return payload


class ConfigurationError(AccessControlError):
    """
    A declared requirement references something that was never wired up.

    Distinct from ForbiddenError so operators can tell "office lacks the
    feature" apart from "the feature was never registered".
    """

    error_code = "configuration_error"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class NotRegisteredError(AccessControlError):
    """Raised when invoking a (feature, operation) pair that is not registered."""

    error_code = "feature_not_registered"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, feature_name: str, operation_name: str):
        self.feature_name = feature_name
        self.operation_name = operation_name
        super().__init__(
            f"Granular feature not found: {feature_name}:{operation_name}",
            {"feature_name": feature_name, "operation_name": operation_name},
        )


class TargetNotCallableError(AccessControlError):
    """Raised when a registered handler does not expose the named operation."""

    error_code = "target_not_callable"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, feature_name: str, operation_name: str):
        self.feature_name = feature_name
        self.operation_name = operation_name
        super().__init__(
            f"Operation {operation_name} not found for feature {feature_name}",
            {"feature_name": feature_name, "operation_name": operation_name},
        )
