"""
Core exception hierarchy for Antistatic.

Provides standardized exception types with categorization for retry logic
and a uniform mapping to the API error shape ``{"error": ..., "code": ...}``.
Route handlers let these propagate; the exception handler in
``antistatic.api.main`` renders them with ``status_code``.
"""

from typing import Any, Optional


# =============================================================================
# Error Codes
# =============================================================================

TOKEN_EXPIRED = "TOKEN_EXPIRED"
PERMISSION_DENIED = "PERMISSION_DENIED"
REVIEW_NOT_FOUND = "REVIEW_NOT_FOUND"
NOT_CONNECTED = "NOT_CONNECTED"
AUTH_FAILED = "AUTH_FAILED"


# =============================================================================
# Base Exceptions
# =============================================================================


class AntistaticError(Exception):
    """Base exception for all Antistatic errors."""

    status_code: int = 500
    code: Optional[str] = None

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_response(self) -> dict[str, Any]:
        """Render the uniform API error body."""
        body: dict[str, Any] = {"error": self.message}
        if self.code:
            body["code"] = self.code
        return body


class RetryableError(AntistaticError):
    """
    Transient errors that should be retried.

    Examples: Rate limits, timeouts, 5xx responses from a provider.
    """

    status_code = 503


class PermanentError(AntistaticError):
    """
    Errors that won't be fixed by retrying.

    Examples: Invalid input, missing required data, authentication failures.
    """

    pass


# =============================================================================
# Request / Domain Errors
# =============================================================================


class ValidationFailedError(PermanentError):
    """Raised when a request is well-formed but semantically invalid."""

    status_code = 400


class NotFoundError(PermanentError):
    """Raised when a tenant-owned row does not exist."""

    status_code = 404


class ForbiddenError(PermanentError):
    """Raised when a row exists but belongs to another user."""

    status_code = 403


class UnauthorizedError(PermanentError):
    """Raised when the request carries no valid user session."""

    status_code = 401


class NotConnectedError(PermanentError):
    """Raised when an integration has not been connected for a location."""

    status_code = 400
    code = NOT_CONNECTED


class TokenExpiredError(PermanentError):
    """Raised when a stored OAuth token is expired and cannot be refreshed."""

    status_code = 401
    code = TOKEN_EXPIRED


class ReviewNotFoundError(NotFoundError):
    """Raised when a GBP review name cannot be resolved."""

    code = REVIEW_NOT_FOUND


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(PermanentError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        details = {"config_key": config_key} if config_key else None
        super().__init__(message, details)


# =============================================================================
# Integration Errors
# =============================================================================


class IntegrationError(AntistaticError):
    """Base exception for outbound API errors (Google, Meta, OpenAI, Apify)."""

    status_code = 502

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.service = service
        super().__init__(message, details, code=code, status_code=status_code)

    def __str__(self) -> str:
        return f"[{self.service}] {super().__str__()}"


class IntegrationRateLimitError(IntegrationError, RetryableError):
    """Raised when a provider rate limits us."""

    status_code = 429


class IntegrationUnavailableError(IntegrationError, RetryableError):
    """Raised when a provider is temporarily unavailable."""

    status_code = 503


class IntegrationAuthError(IntegrationError, PermanentError):
    """Raised when provider authentication fails."""

    status_code = 401
    code = AUTH_FAILED


class IntegrationPermissionError(IntegrationError, PermanentError):
    """Raised when the connected account lacks a required permission."""

    status_code = 403
    code = PERMISSION_DENIED

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
        *,
        required_permission: Optional[str] = None,
    ):
        self.required_permission = required_permission
        super().__init__(service, message, details)

    def to_response(self) -> dict[str, Any]:
        body = super().to_response()
        if self.required_permission:
            body["requiredPermission"] = self.required_permission
        return body


class IntegrationNotFoundError(IntegrationError, PermanentError):
    """Raised when a provider resource is not found."""

    status_code = 404
