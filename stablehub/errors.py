"""
Domain errors raised by services and rendered by the app-level handler
as ``{"error": message, "code": code}`` with the matching HTTP status.
"""
from typing import Optional


class DomainError(Exception):
    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(DomainError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class Forbidden(DomainError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden: insufficient permissions"


class ValidationError(DomainError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class NotFound(DomainError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class InvalidTransition(DomainError):
    status_code = 409
    code = "invalid_transition"
    default_message = "Invalid status transition"


class Conflict(DomainError):
    status_code = 409
    code = "conflict"
    default_message = "Conflict"
