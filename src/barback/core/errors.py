"""Custom exceptions and error response schemas."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Standardized error response."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(None, description="Additional context")


class AppError(Exception):
    """Base exception for all app-level errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> ErrorDetail:
        """Convert to API response schema."""
        return ErrorDetail(
            code=self.code,
            message=self.message,
            details=self.details if self.details else None,
        )


class NotFoundError(AppError):
    """Raised when resource doesn't exist."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            code="NOT_FOUND",
            message=f"{resource} with ID {resource_id} not found",
            status_code=404,
            details={"resource": resource, "resource_id": str(resource_id)},
        )


class AlreadyResolvedError(AppError):
    """Raised when a grant request has already left the pending state."""

    def __init__(self, request_id: str, status: str):
        self.status = status
        super().__init__(
            code="ALREADY_RESOLVED",
            message=f"Grant request {request_id} already processed",
            status_code=409,
            details={"request_id": str(request_id), "status": status},
        )


class RequestExpiredError(AppError):
    """Raised when the owner answers a pending grant request after it expired."""

    def __init__(self, request_id: str):
        super().__init__(
            code="REQUEST_EXPIRED",
            message=f"Grant request {request_id} expired before it was resolved",
            status_code=409,
            details={"request_id": str(request_id)},
        )


class DuplicateRequestError(AppError):
    """Raised when an outstanding grant request exists for a session/item pair.

    ``state`` is the existing record's status ("pending" or "approved") and
    ``existing`` is the record itself, so callers can tell an already granted
    item apart from one still waiting on the owner.
    """

    def __init__(self, existing: Any, state: str):
        self.existing = existing
        self.state = state
        message = (
            "Already authorized for this item"
            if state == "approved"
            else "Authorization request already pending"
        )
        super().__init__(
            code="DUPLICATE_REQUEST",
            message=message,
            status_code=409,
            details={"request_id": str(getattr(existing, "id", "")), "state": state},
        )

    @property
    def already_approved(self) -> bool:
        return self.state == "approved"


class NotRestrictedError(AppError):
    """Raised when authorization is requested for an item outside the restricted tier."""

    def __init__(self, item_id: str, tier: str | None = None):
        super().__init__(
            code="NOT_RESTRICTED",
            message="Authorization only required for ultra shelf items",
            status_code=400,
            details={"item_id": str(item_id), "shelf_tier": tier},
        )


class ProviderUnavailableError(AppError):
    """Raised when an external provider (avatar or generation) fails or rejects a call."""

    def __init__(self, provider: str, message: str, details: Optional[dict] = None):
        self.provider = provider
        super().__init__(
            code="PROVIDER_UNAVAILABLE",
            message=f"{provider}: {message}",
            status_code=502,
            details={"provider": provider, **(details or {})},
        )


class StoreUnavailableError(AppError):
    """Raised on persistence failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="STORE_UNAVAILABLE",
            message=message,
            status_code=503,
            details=details,
        )
