"""
Shared error handling for the Subscriptions App.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class SubscriptionsException(Exception):
    """Base exception for Subscriptions App components."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(SubscriptionsException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(SubscriptionsException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ConfigurationError(SubscriptionsException):
    """Server-side misconfiguration detected while handling a request."""

    status_code = 500

    def __init__(self, message: str = "Service misconfigured", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ServiceError(SubscriptionsException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class ExternalServiceError(SubscriptionsException):
    """External service errors."""

    status_code = 502

    def __init__(
        self,
        service: str,
        message: str = "External service error",
        details: Optional[Dict[str, Any]] = None,
        code: str = "EXTERNAL_SERVICE_ERROR",
    ):
        self.service = service
        super().__init__(code, f"{service}: {message}", details)


class TokenRequestError(ExternalServiceError):
    """A grant or refresh against the token endpoint failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.response_status = status_code
        self.body = body
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if body is not None:
            details["body"] = body
        super().__init__("patreon", message, details, code="TOKEN_REQUEST_FAILED")


class FetchError(ExternalServiceError):
    """A membership page could not be fetched or decoded."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ):
        self.response_status = status_code
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if url is not None:
            details["url"] = url
        super().__init__("patreon", message, details, code="FETCH_FAILED")


class TokenExpiredError(SubscriptionsException):
    """The refresh token has expired; nothing can recover without operator action."""

    def __init__(self, expires_at: Any):
        super().__init__(
            "TOKEN_EXPIRED",
            f"Refresh token has already expired (expired at {expires_at})",
            {"expires_at": str(expires_at)},
        )
        self.expires_at = expires_at


class RateLimitError(SubscriptionsException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)


class SnapshotNotReadyError(SubscriptionsException):
    """No membership snapshot has been loaded yet."""

    status_code = 503

    def __init__(self, message: str = "Initial data not loaded yet"):
        super().__init__("SNAPSHOT_NOT_READY", message)
