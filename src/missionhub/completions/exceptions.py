"""Domain errors raised by the completion write paths.

Routers translate these into HTTP responses; the progression engine never raises them.
"""

from __future__ import annotations


class CompletionError(ValueError):
    """Base class carrying a machine-readable code and an HTTP status."""

    status_code = 400

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class ValidationFailed(CompletionError):
    status_code = 400


class ForbiddenError(CompletionError):
    status_code = 403


class NotFoundError(CompletionError):
    status_code = 404


class ConflictError(CompletionError):
    status_code = 409
