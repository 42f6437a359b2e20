"""
Shared error handling for the service search stack.

Only ValidationError, AuthenticationError, AuthorizationError, NotFoundError
and StoreUnavailable are meant to reach a client. RemoteUnavailable and
CacheFailure are raised internally and degrade to local-only results or cache
misses.
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


class SearchServiceException(Exception):
    """Base exception for service search components."""

    status_code: int = 400

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


class ValidationError(SearchServiceException):
    """Malformed query, filters or payload. User-correctable."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(SearchServiceException):
    """Operation requires an authenticated caller."""

    status_code = 401

    def __init__(self, message: str = "Authentication required", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(SearchServiceException):
    """Authenticated caller may not act on this resource."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class NotFoundError(SearchServiceException):
    """Referenced category, service or user does not exist."""

    status_code = 404

    def __init__(self, resource: str, resource_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "NOT_FOUND",
            f"{resource} not found",
            {"resource": resource, "id": resource_id, **(details or {})}
        )


class StoreUnavailable(SearchServiceException):
    """The authoritative store failed or timed out."""

    status_code = 500

    def __init__(self, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", message, details)


class ExternalServiceError(SearchServiceException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class RemoteUnavailable(ExternalServiceError):
    """Remote enrichment service exhausted its retries or answered with an error."""

    status_code = 503

    def __init__(self, message: str = "Remote service unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("remote_enrichment", message, details)
        self.code = "REMOTE_UNAVAILABLE"


class CacheFailure(SearchServiceException):
    """Cache-internal fault."""

    status_code = 500

    def __init__(self, message: str = "Cache failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_FAILURE", message, details)
