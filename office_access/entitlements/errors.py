"""
Structured error classes for entitlement activation.
"""

from typing import Any, Dict, Optional

from fastapi import status


class EntitlementError(Exception):
    """Base exception for entitlement errors."""

    error_code = "entitlement_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ActivationError(EntitlementError):
    """
    Raised when a feature group cannot be activated for an office.

    code is one of the class constants below (FEATURE_GROUP_NOT_FOUND,
    TOKEN_REQUIRED, TOKEN_NOT_FOUND, ...); not-found codes map to HTTP 404.
    """

    FEATURE_GROUP_NOT_FOUND = "feature_group_not_found"
    TOKEN_REQUIRED = "token_required"
    TOKEN_NOT_FOUND = "token_not_found"
    TOKEN_INACTIVE = "token_inactive"
    TOKEN_GROUP_MISMATCH = "token_group_mismatch"
    TOKEN_REJECTED = "token_rejected"

    _NOT_FOUND_CODES = (FEATURE_GROUP_NOT_FOUND, TOKEN_NOT_FOUND)

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        super().__init__(message, details)

    @property
    def error_code(self) -> str:  # type: ignore[override]
        return self.code

    @property
    def http_status(self) -> int:  # type: ignore[override]
        if self.code in self._NOT_FOUND_CODES:
            return status.HTTP_404_NOT_FOUND
        return status.HTTP_400_BAD_REQUEST


class TokenVerificationError(EntitlementError):
    """
    The external token verification service could not be reached or
    answered with an error. Activation is aborted.
    """

    error_code = "token_verification_failed"

    def __init__(
        self,
        message: str,
        http_status: int = status.HTTP_503_SERVICE_UNAVAILABLE,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.http_status = http_status
