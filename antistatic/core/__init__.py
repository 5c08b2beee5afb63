"""
Core infrastructure modules for Antistatic.

Provides common utilities used across the application:
- exceptions: Standardized exception hierarchy and API error codes
- logging: structlog configuration
- geo: Haversine distance
"""

from antistatic.core.exceptions import (
    AntistaticError,
    RetryableError,
    PermanentError,
    ValidationFailedError,
    NotFoundError,
    ForbiddenError,
    UnauthorizedError,
    NotConnectedError,
    TokenExpiredError,
    ReviewNotFoundError,
    ConfigurationError,
    IntegrationError,
    IntegrationRateLimitError,
    IntegrationUnavailableError,
    IntegrationAuthError,
    IntegrationPermissionError,
    IntegrationNotFoundError,
)

__all__ = [
    "AntistaticError",
    "RetryableError",
    "PermanentError",
    "ValidationFailedError",
    "NotFoundError",
    "ForbiddenError",
    "UnauthorizedError",
    "NotConnectedError",
    "TokenExpiredError",
    "ReviewNotFoundError",
    "ConfigurationError",
    "IntegrationError",
    "IntegrationRateLimitError",
    "IntegrationUnavailableError",
    "IntegrationAuthError",
    "IntegrationPermissionError",
    "IntegrationNotFoundError",
]
