from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base for every error the core raises on purpose.

    ``code`` is stable and machine-readable; ``message`` is safe to show to a
    caller. Store and upstream failures keep the driver detail out of both.
    """

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: Any | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    status_code = 422
    default_code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class NotFoundError(AppError):
    status_code = 404
    default_code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    default_code = "CONFLICT"
    default_message = "Conflict"


class SessionFullError(ConflictError):
    default_code = "SESSION_FULL"
    default_message = "This session is at maximum capacity"


class ForbiddenError(AppError):
    status_code = 403
    default_code = "FORBIDDEN"
    default_message = "Forbidden"


class RateLimitError(AppError):
    status_code = 429
    default_code = "RATE_LIMIT"
    default_message = "Too many requests"


class UpstreamError(AppError):
    status_code = 502
    default_code = "UPSTREAM_ERROR"
    default_message = "Upstream service failed"


class StoreError(AppError):
    status_code = 500
    default_code = "STORE_ERROR"
    default_message = "Storage operation failed"
