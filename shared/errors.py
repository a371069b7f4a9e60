"""
Shared error handling for Bulletin services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class BulletinException(Exception):
    """Base exception for Bulletin services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(BulletinException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(BulletinException):
    """Requested row does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class StoreUnavailable(BulletinException):
    """The row store could not be reached or timed out.

    Recoverable: callers may retry. Read caches never store this outcome.
    """

    status_code = 503

    def __init__(self, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", message, details)


class MutationFailed(BulletinException):
    """An authoritative mutation was rejected."""

    status_code = 409

    def __init__(
        self,
        message: str = "Mutation failed",
        details: Optional[Dict[str, Any]] = None,
        entity_id: Optional[Any] = None,
    ):
        self.entity_id = entity_id
        details = dict(details or {})
        if entity_id is not None:
            details.setdefault("entity_id", entity_id)
        super().__init__("MUTATION_FAILED", message, details)


class ActionPending(BulletinException):
    """A second optimistic action targeted an entity that is still pending."""

    status_code = 409

    def __init__(self, entity_id: Any, message: str = "Action already pending"):
        self.entity_id = entity_id
        super().__init__("ACTION_PENDING", message, {"entity_id": entity_id})
