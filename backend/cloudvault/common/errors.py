from __future__ import annotations

from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException


class APIError(Exception):
    def __init__(self, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


class Unauthenticated(APIError):
    def __init__(self, message: str = "Authentication required.") -> None:
        super().__init__(401, "UNAUTHENTICATED", message)


class AccountDisabled(APIError):
    def __init__(self, message: str = "This account is disabled.") -> None:
        super().__init__(403, "ACCOUNT_DISABLED", message)


class TokenRevoked(APIError):
    def __init__(self, message: str = "Session has been revoked.") -> None:
        super().__init__(401, "TOKEN_REVOKED", message)


class Forbidden(APIError):
    def __init__(self, reason: str, message: str = "Operation not permitted.", details: dict[str, Any] | None = None) -> None:
        super().__init__(403, "FORBIDDEN", message, {"reason": reason, **(details or {})})
        self.reason = reason


class NotFound(APIError):
    def __init__(self, message: str = "Resource not found.", details: dict[str, Any] | None = None) -> None:
        super().__init__(404, "NOT_FOUND", message, details)


class IntegrityViolation(APIError):
    """Corrupted hierarchy or share data that needs operator attention."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(500, "INTEGRITY_VIOLATION", message, details)


class StoreUnavailable(APIError):
    """The object store call failed; the caller may retry."""

    def __init__(self, message: str = "Object store is unavailable.", details: dict[str, Any] | None = None) -> None:
        super().__init__(503, "STORE_UNAVAILABLE", message, details)


def error_payload(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        }
    }


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(APIError)
    def handle_api_error(error: APIError):  # type: ignore[no-untyped-def]
        if isinstance(error, IntegrityViolation):
            app.logger.error("integrity violation: %s %s", error.message, error.details)
        return jsonify(error_payload(error.code, error.message, error.details)), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):  # type: ignore[no-untyped-def]
        return (
            jsonify(error_payload("HTTP_ERROR", error.description, {"status": error.code})),
            error.code or 500,
        )

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[no-untyped-def]
        app.logger.exception("Unhandled exception", exc_info=error)
        return jsonify(error_payload("INTERNAL_ERROR", "An unexpected error occurred.")), 500
