"""
Domain exceptions raised by the booking core.

Services raise these and own the rollback; the API layer renders them
as ``{"error", "code", "details"}`` with the matching status code.
"""
from typing import Any, Dict, Optional

from fastapi import status


class DomainError(Exception):
    """Base class for all business errors"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "server_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(DomainError):
    """Malformed request or a rule the caller can fix (bad payment type, empty basket)"""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "bad_request"


class AuthenticationError(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"


class ForbiddenError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ConflictError(DomainError):
    """Scheduling overlap or an illegal state transition"""
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class PersistenceError(DomainError):
    """Unexpected database failure; the message never carries driver details"""

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
