"""
Error taxonomy for the Kanban backend.

All domain errors derive from `KanbanError` and carry the HTTP status code the
API layer responds with. Hierarchy::

    KanbanError
    ├── ValidationError          422
    ├── AuthenticationRequired   401
    ├── NotFoundError            404
    ├── PermissionDenied         403
    ├── ConflictError            409
    ├── TransactionError         500  (rolled back, retryable)
    └── ExternalServiceError     never surfaced, triggers local fallback
"""

from typing import Any, Dict, Optional


class KanbanError(Exception):
    """Base exception for all domain errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details: Dict[str, Any] = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | details={self.details}"
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r})"


class ValidationError(KanbanError):
    """Malformed or missing input. No state was changed."""

    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class AuthenticationRequired(KanbanError):
    """No actor identity was supplied with the request."""

    status_code = 401

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class NotFoundError(KanbanError):
    """A referenced entity does not exist."""

    status_code = 404

    def __init__(self, entity: str, identifier: Any = None) -> None:
        message = f"{entity} not found"
        super().__init__(message, {"entity": entity} if identifier is None else {"entity": entity, "id": identifier})
        self.entity = entity
        self.identifier = identifier


class PermissionDenied(KanbanError):
    """The actor lacks the required role or task ownership."""

    status_code = 403


class ConflictError(KanbanError):
    """The request conflicts with the current state of the resource."""

    status_code = 409


class TransactionError(KanbanError):
    """A multi-row write failed and was rolled back."""

    status_code = 500

    def __init__(self, message: str = "Internal persistence failure, please retry") -> None:
        super().__init__(message, {"retryable": True})


class ExternalServiceError(KanbanError):
    """The external suggestion model failed or returned an unusable answer."""

    status_code = 502
