# Overview: Error taxonomy shared by services and routes.

"""
Every failure a service can report is one of the classes below.

Each carries a stable machine-readable ``code`` and the HTTP status the API
answers with. Routes translate them with ``error_response``; anything else
that escapes a service is an UNEXPECTED 500.
"""

from __future__ import annotations

from typing import Any


class StockroomError(Exception):
    """Base class for all domain errors."""

    code = "UNEXPECTED"
    http_status = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class InvalidArgumentError(StockroomError, ValueError):
    code = "INVALID_ARGUMENT"
    http_status = 400


class UnauthenticatedError(StockroomError):
    code = "UNAUTHENTICATED"
    http_status = 401


class UnauthorizedError(StockroomError):
    code = "UNAUTHORIZED"
    http_status = 403


class NotFoundError(StockroomError):
    code = "NOT_FOUND"
    http_status = 404


class ConflictError(StockroomError):
    """State precondition violated (duplicate SKU, concurrent write, ...)."""

    code = "CONFLICT"
    http_status = 409


class InsufficientStockError(ConflictError):
    code = "INSUFFICIENT_STOCK"
    http_status = 400


class SaleCancelledError(ConflictError):
    code = "SALE_CANCELLED"
    http_status = 400


class UnexpectedError(StockroomError):
    code = "UNEXPECTED"
    http_status = 500


def error_response(exc: StockroomError):
    """Flask (body, status) tuple for a domain error."""
    return exc.to_dict(), exc.http_status


def internal_error_response():
    """Body for failures that are not domain errors (already logged by the caller)."""
    return {"error": "Internal server error", "code": UnexpectedError.code}, UnexpectedError.http_status
