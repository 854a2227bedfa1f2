"""Application error taxonomy and the JSON error envelope.

Handlers raise these; `main.py` renders them as
`{"success": false, "error": ..., "code": ..., "details": ...}`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse


class AppError(Exception):
    status_code = 500
    code = "SYSTEM_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    code = "AUTHENTICATION_REQUIRED"


class AuthorizationError(AppError):
    status_code = 403
    code = "ACCESS_DENIED"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 400
    code = "CONFLICT"


class ExternalServiceError(AppError):
    status_code = 500
    code = "EXTERNAL_SERVICE_ERROR"


class SystemError(AppError):  # noqa: A001 - part of the public taxonomy
    status_code = 500
    code = "SYSTEM_ERROR"


class SubscriptionUpdateError(SystemError):
    """Atomic subscription write failed; nothing was applied."""

    code = "ATOMIC_UPDATE_FAILED"

    def __init__(self, *, user_id: str, event_type: str, message: str) -> None:
        super().__init__(
            "Failed to update subscription atomically",
            details={"userId": user_id, "eventType": event_type, "error": message},
        )
        self.user_id = user_id
        self.event_type = event_type
        self.underlying_message = message


def error_response(
    status_code: int,
    *,
    error: str,
    code: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    payload: Dict[str, Any] = {"success": False, "error": error, "code": code}
    if details:
        payload["details"] = details
    return JSONResponse(status_code=status_code, content=payload)


def app_error_response(exc: AppError, *, expose_details: bool = True) -> JSONResponse:
    return error_response(
        exc.status_code,
        error=exc.message,
        code=exc.code,
        details=exc.details if expose_details else None,
    )
