"""OrbitCRM exception hierarchy.

Every error carries a machine-readable ``code`` and the HTTP status it maps
to; the application exception handler renders them as
``{"error": code, "message": message, **extra}``.
"""

from typing import Any


class OrbitError(Exception):
    """Base exception for all OrbitCRM errors."""

    status_code = 500

    def __init__(
        self,
        message: str = "",
        code: str = "internal_error",
        extra: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.extra = extra or {}
        super().__init__(message)


class UnauthorizedError(OrbitError):
    """Raised when no valid session or API key is presented."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="unauthorized")


class ForbiddenError(OrbitError):
    """Raised on role or tenant mismatch."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="forbidden")


class ModelNotAvailableError(OrbitError):
    """Raised when the caller's tier is not entitled to a model."""

    status_code = 403

    def __init__(self, model: str, upgrade_to: str | None):
        super().__init__(
            f"{model} requires the {upgrade_to} plan or higher.",
            code="model_not_available",
            extra={"upgrade_to": upgrade_to},
        )


class InsufficientTokensError(OrbitError):
    """Raised when the organization's token balance is exhausted."""

    status_code = 402

    def __init__(
        self,
        remaining: int,
        upgrade_to: str | None = None,
        reset_info: str = "",
    ):
        super().__init__(
            "You have used all your AI tokens for this period.",
            code="insufficient_tokens",
            extra={
                "remaining": remaining,
                "upgrade_to": upgrade_to,
                "reset_info": reset_info,
            },
        )


class RateLimitedError(OrbitError):
    """Raised when a rate-limit window is exhausted.

    ``reset_at`` is a unix timestamp in seconds; the handler turns it into a
    ``Retry-After`` header.
    """

    status_code = 429

    def __init__(self, reset_at: float):
        self.reset_at = reset_at
        super().__init__(
            "Too many requests. Please try again later.", code="rate_limited"
        )


class NotFoundError(OrbitError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="not_found")


class ValidationError(OrbitError):
    """Raised on malformed input that passed schema parsing."""

    status_code = 400

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, code="validation")


class ConflictError(OrbitError):
    status_code = 409

    def __init__(self, message: str = "Conflict"):
        super().__init__(message, code="conflict")


class UpstreamError(OrbitError):
    """Raised when a backend or third-party call fails."""

    status_code = 502

    def __init__(self, message: str = "Upstream service failed"):
        super().__init__(message, code="upstream_failure")
