"""
Custom exceptions for the analytics dispatch service.

Provides structured error handling with HTTP status codes and error
details for API responses.
"""

from typing import Any, Dict, Optional


class AnalyticsDispatchException(Exception):
    """Base exception for the analytics dispatch service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class EventValidationError(AnalyticsDispatchException):
    """Raised when a submitted item cannot be normalised to an event mapping."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="validation_error",
            details=details,
        )


class BackendInsertError(AnalyticsDispatchException):
    """Raised when the analytics backend rejects an insert."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="backend_insert_error",
            details=details,
        )


class AuthenticationError(AnalyticsDispatchException):
    """Raised when the backend access token cannot be obtained."""

    def __init__(
        self,
        message: str = "Unable to obtain backend access token",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="authentication_error",
            details=details,
        )


class ConfigurationError(AnalyticsDispatchException):
    """Raised when required settings are missing."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="configuration_error",
            details=details,
        )
