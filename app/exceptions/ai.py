# ruff: noqa: D107
"""AI provider exceptions.

Every failure of a text-generation backend surfaces as an ``AIServiceError``.
The provider's HTTP status, when known, travels in ``details["status_code"]``.
"""

from typing import Any

from .base import BaseAppException


class AIServiceError(BaseAppException):
    """Base exception for AI service errors: failed to get a response."""

    def __init__(
        self,
        message: str = "Failed to get response from AI service",
        error_code: str = "AI_SERVICE_ERROR",
        details: dict[str, Any] | None = None,
        status_code: int = 502,
        upstream_status: int | None = None,
    ):
        details = dict(details or {})
        if upstream_status is not None:
            details["status_code"] = upstream_status
        super().__init__(message=message, status_code=status_code, error_code=error_code, details=details)

    @property
    def upstream_status(self) -> int | None:
        return self.details.get("status_code")


class AIServiceUnavailableError(AIServiceError):
    """Exception raised when the AI backend cannot be reached or answers badly."""

    def __init__(
        self,
        message: str = "AI service is temporarily unavailable",
        details: dict[str, Any] | None = None,
        upstream_status: int | None = None,
    ):
        super().__init__(message, "AI_SERVICE_UNAVAILABLE", details, 503, upstream_status)


class AIModelNotFoundError(AIServiceError):
    """Exception raised when the backend does not serve the requested model."""

    def __init__(
        self,
        message: str = "Requested model is not available",
        model: str | None = None,
        details: dict[str, Any] | None = None,
        upstream_status: int | None = None,
    ):
        details = dict(details or {})
        if model:
            details["model"] = model
        super().__init__(message, "AI_MODEL_NOT_FOUND", details, 502, upstream_status)


class AITimeoutError(AIServiceError):
    """Exception raised when an AI request or stream times out."""

    def __init__(
        self,
        message: str = "AI service request timed out",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_TIMEOUT", details, 504)


class AIConfigurationError(AIServiceError):
    """Exception raised when an AI provider is not properly configured."""

    def __init__(
        self,
        message: str = "AI service is not properly configured",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_CONFIGURATION_ERROR", details, 500)


class AIContentFilterError(AIServiceError):
    """Exception raised when content is blocked by AI safety filters."""

    def __init__(
        self,
        message: str = "Content was blocked by AI safety filters",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_CONTENT_FILTERED", details, 502)


class AIRateLimitError(AIServiceError):
    """Exception raised when AI service rate limit is hit."""

    def __init__(
        self,
        message: str = "AI service rate limit exceeded",
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
        upstream_status: int | None = 429,
    ):
        details = dict(details or {})
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(message, "AI_RATE_LIMITED", details, 429, upstream_status)


def is_model_not_found(exc: BaseException) -> bool:
    """Classifier used by the model fallback retry policy."""
    return isinstance(exc, AIModelNotFoundError)
