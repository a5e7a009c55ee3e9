"""
Custom exceptions for the request governance layer.

Provides structured error handling with appropriate HTTP status codes
and error details for API responses.
"""

from typing import Any, Dict, Optional


class GovernanceException(Exception):
    """Base exception for reqguard."""

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

    def to_payload(self) -> Dict[str, Any]:
        """Body used for JSON error responses."""
        return {
            "error": self.error_code,
            "message": str(self),
            "details": self.details,
        }


class RateLimitError(GovernanceException):
    """Raised when a client exceeds its request budget and blocking is enabled."""

    def __init__(
        self,
        message: str = "Too many requests from this IP, please try again later",
        retry_after: Optional[int] = None,
    ) -> None:
        details = {}
        if retry_after:
            details["retry_after"] = retry_after

        super().__init__(
            message=message,
            status_code=429,
            error_code="rate_limit_exceeded",
            details=details,
        )


class LogWriteError(GovernanceException):
    """Raised when appending to a log stream fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="log_write_error",
            details=details,
        )


class ConfigurationError(GovernanceException):
    """Raised when the governance core is built from invalid settings."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="configuration_error",
            details=details,
        )
