"""
services/errors.py
------------------
Exception types raised by the service layer.

Each exception carries the HTTP status code the API layer should answer
with, so routes can let them propagate to the registered error handler.
"""


class SoilHealthError(Exception):
    """Base class for all service-level errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SoilHealthError):
    """One or more submitted fields are missing or invalid."""

    status_code = 422

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class AuthenticationError(SoilHealthError):
    status_code = 401


class PermissionDeniedError(SoilHealthError):
    status_code = 403


class NotFoundError(SoilHealthError):
    status_code = 404


class ConflictError(SoilHealthError):
    """Another mutation for the same record is still in flight."""

    status_code = 409


class RepositoryError(SoilHealthError):
    status_code = 500
