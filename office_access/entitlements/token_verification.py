"""
External token verification for paid feature groups.

Paid groups are unlocked with tokens sold by an external billing app.
Before a paid activation is accepted, the token is POSTed to the
verification service together with the group's app_name:

    POST {TOKEN_VERIFICATION_API_URL}
    {"token": "...", "appName": "...", "amount": "..."}

    200 {"success": true, "valid": true, "active": true, "message": "..."}

Network errors, timeouts and non-2xx answers raise TokenVerificationError.
A well-formed answer is returned as-is; deciding what an invalid token
means is the evaluator's job.
"""

import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from fastapi import status
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from office_access.entitlements.errors import TokenVerificationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class TokenVerificationResult(BaseModel):
    """Response body of the verification service."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    success: bool = False
    valid: bool = False
    active: bool = False
    message: Optional[str] = None
    token_data: Dict[str, Any] = Field(default_factory=dict, alias="tokenData")

    @property
    def accepted(self) -> bool:
        return self.success and self.valid and self.active


class TokenVerifier(Protocol):
    def verify(
        self, token: str, app_name: str, amount: Optional[str] = None
    ) -> TokenVerificationResult:
        ...


class HttpTokenVerifier:
    """
    httpx client for the token verification service.

    A transport may be injected for tests (httpx.MockTransport).
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not api_url:
            raise ValueError("api_url is required")
        self._api_url = api_url
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def verify(
        self, token: str, app_name: str, amount: Optional[str] = None
    ) -> TokenVerificationResult:
        """
        Verify a token for an app.

        Raises:
            ValueError: If token or app_name is empty
            TokenVerificationError: If the service is unreachable or
                answers with an error status
        """
        if not token or not app_name:
            raise ValueError("token and app_name are required")

        payload: Dict[str, Any] = {"token": token, "appName": app_name}
        if amount:
            payload["amount"] = amount

        logger.info("Verifying feature token", extra={"app_name": app_name})

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(self._api_url, json=payload, headers=self._headers())
                resp.raise_for_status()
                body = resp.json()
        except httpx.TimeoutException:
            logger.warning(
                "Token verification timed out",
                extra={"app_name": app_name, "timeout_seconds": self._timeout},
            )
            raise TokenVerificationError(
                "Token verification service is currently unavailable. Please try again later."
            )
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response) or "Token verification failed"
            logger.warning(
                "Token verification rejected",
                extra={"app_name": app_name, "status_code": e.response.status_code},
            )
            raise TokenVerificationError(
                message,
                http_status=status.HTTP_400_BAD_REQUEST,
                details={"status_code": e.response.status_code},
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Token verification request failed",
                extra={"app_name": app_name, "error": str(e)},
            )
            raise TokenVerificationError(
                "Token verification service is currently unavailable. Please try again later."
            )
        except ValueError:
            raise TokenVerificationError(
                "Token verification service returned an invalid response",
                http_status=status.HTTP_502_BAD_GATEWAY,
            )

        try:
            result = TokenVerificationResult.model_validate(body)
        except ValidationError:
            raise TokenVerificationError(
                "Token verification service returned an invalid response",
                http_status=status.HTTP_502_BAD_GATEWAY,
            )
        logger.info(
            "Token verification result",
            extra={
                "app_name": app_name,
                "success": result.success,
                "valid": result.valid,
                "active": result.active,
            },
        )
        return result


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        return data.get("message")
    return None
