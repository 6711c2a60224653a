"""
Centralized exception hierarchy for domain-specific errors.

Operational errors (validation, not-found, conflict) carry a structured
``code`` plus context ``details`` and are never retried by the job queue.
Infrastructural errors (external services, storage) escape handlers and
go through the job retry path.
"""


class WayfarerError(Exception):
    """Base exception for all application-specific errors."""

    code = "error"

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        *,
        code: str | None = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(WayfarerError):
    """Exception raised when data validation fails."""

    code = "validation_error"


class ResourceNotFoundError(WayfarerError):
    """Exception raised when a requested resource is not found."""

    code = "not_found"


class ConflictError(WayfarerError):
    """Exception raised when an operation conflicts with the current state."""

    code = "conflict"


class DuplicateResourceError(ConflictError):
    """Exception raised when attempting to create a duplicate resource."""


class ExternalServiceError(WayfarerError):
    """Exception raised when service calls fail."""

    code = "external_service_error"


class RateLimitError(ExternalServiceError):
    """Exception raised when rate limits are exceeded."""

    code = "rate_limited"


WayfarerException = WayfarerError
ValidationException = ValidationError
ResourceNotFoundException = ResourceNotFoundError
ConflictException = ConflictError
DuplicateResourceException = DuplicateResourceError
ExternalServiceException = ExternalServiceError
RateLimitException = RateLimitError
