"""Custom exceptions for the context engine."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "NotFoundError": "The requested resource was not found.",
    "AuthenticationError": "Authentication failed. Please log in again.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "PersistenceError": "A database error occurred. Please try again.",
    "SourceUnavailableError": "A data source is temporarily unavailable.",
    "AnalysisDegradedError": "Query analysis is running in a degraded mode.",
    "PipelineFailureError": "Your request could not be processed. Please try again.",
    "CircuitBreakerOpen": "A service dependency is temporarily unavailable. Please try again in a moment.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Walks the exception's MRO so subclasses inherit the message of the
    closest known ancestor.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class ContextEngineError(Exception):
    """Base exception for all context engine errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize context engine exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class NotFoundError(ContextEngineError):
    """Resource not found error (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        """Initialize not found error.

        Args:
            resource: Name of the resource that was not found.
            resource_id: Optional ID of the resource.
        """
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class AuthenticationError(ContextEngineError):
    """Authentication failed error (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, code="AUTHENTICATION_ERROR", status_code=401)


class ValidationError(ContextEngineError):
    """Input validation error (400)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: Optional name of the offending field.
        """
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details={"field": field} if field else {},
        )


class PersistenceError(ContextEngineError):
    """Durable store write or read failed (503)."""

    def __init__(self, message: str = "Database operation failed", operation: str | None = None) -> None:
        """Initialize persistence error.

        Args:
            message: Error message.
            operation: Name of the store operation that failed.
        """
        super().__init__(
            message=message,
            code="PERSISTENCE_ERROR",
            status_code=503,
            details={"operation": operation} if operation else {},
        )


class AnalysisDegradedError(ContextEngineError):
    """A semantic analysis stage failed and a fallback was used."""

    def __init__(self, stage: str, message: str = "Analysis stage failed") -> None:
        """Initialize analysis degraded error.

        Args:
            stage: Name of the analyzer stage that failed.
            message: Error message.
        """
        super().__init__(
            message=f"{message}: {stage}",
            code="ANALYSIS_DEGRADED",
            status_code=500,
            details={"stage": stage},
        )
        self.stage = stage


class SourceUnavailableError(ContextEngineError):
    """A single data source fetch failed (502)."""

    def __init__(self, source: str, reason: str, severity: str = "medium") -> None:
        """Initialize source unavailable error.

        Args:
            source: Identifier of the data source.
            reason: What went wrong.
            severity: One of low, medium, high.
        """
        super().__init__(
            message=f"Data source '{source}' unavailable: {reason}",
            code="SOURCE_UNAVAILABLE",
            status_code=502,
            details={"source": source, "severity": severity},
        )
        self.source = source
        self.reason = reason
        self.severity = severity


class PipelineFailureError(ContextEngineError):
    """Unexpected failure of the whole request pipeline (500)."""

    def __init__(self, message: str = "Request pipeline failed") -> None:
        super().__init__(message=message, code="PIPELINE_FAILURE", status_code=500)
