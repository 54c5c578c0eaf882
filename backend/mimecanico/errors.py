# Overview: Exception taxonomy shared by services and routes.

"""
Workshop error taxonomy.

Services raise these; the app-level error handlers in ``create_app`` turn
them into the JSON envelope ``{"success": false, "message": ..., "details": ...}``
with the status code carried by the class.
"""

from __future__ import annotations


class WorkshopError(Exception):
    """Base class for all expected business errors."""
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(WorkshopError, ValueError):
    """400-level input problem. Raised before any write begins."""
    status_code = 400


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet strength requirements."""


class AuthError(WorkshopError):
    """401: missing, invalid, expired or revoked credentials."""
    status_code = 401


class ForbiddenError(WorkshopError):
    """403: authenticated but not allowed."""
    status_code = 403


class NotFoundError(WorkshopError, LookupError):
    """Referenced document, work order, client or inventory item is absent."""
    status_code = 404


class ConflictError(WorkshopError):
    """409-level business rule conflict (double invoicing, duplicate number, duplicate code)."""
    status_code = 409


class StorageError(WorkshopError):
    """Transaction or connection failure. The transaction has been rolled back."""
    status_code = 500
