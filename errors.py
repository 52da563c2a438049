"""Application errors.

Every error carries the HTTP status it maps to and a short machine-readable
`reason` so clients can tell, for example, a duplicate redemption apart from
a reached redemption cap. app.py renders them as
{"success": False, "error": ..., "reason": ..., "details": ...}.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    status_code = 500
    default_reason = "error"

    def __init__(self, message: str, reason: str | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.details = details

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message, "reason": self.reason}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    """Missing or invalid request fields. Nothing was written."""

    status_code = 400
    default_reason = "invalid_request"


class UnauthorizedError(AppError):
    status_code = 401
    default_reason = "unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    default_reason = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_reason = "not_found"


class ConflictError(AppError):
    """Request is well formed but the current state refuses it."""

    status_code = 409
    default_reason = "conflict"


class ExternalServiceError(AppError):
    """Indexer, notification endpoint or registry call failed."""

    status_code = 502
    default_reason = "external_service_error"


class PersistenceError(AppError):
    status_code = 500
    default_reason = "persistence_error"
