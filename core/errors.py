"""Error taxonomy for VIP Pricing.

Every failure the core reports to a caller is a VipPricingError subclass with
a stable machine code. The API layer maps codes to HTTP status codes and
renders `to_response()`; nothing else about the exception leaks to clients.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error body returned by the API."""

    status: str = "fail"
    code: str
    error: str
    details: dict[str, Any] = Field(default_factory=dict)


class VipPricingError(Exception):
    """Base exception for the VIP pricing core."""

    code: str = "VIP_PRICING_ERROR"
    http_status: int = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(code=self.code, error=self.message, details=self.details)


class ValidationError(VipPricingError):
    """Caller-supplied input failed a precondition. No remote call was made."""

    code = "VALIDATION_ERROR"
    http_status = 400


class RemoteError(VipPricingError):
    """The commerce platform reported field-level user errors.

    `message` is the first user error verbatim; the full list is kept in
    `user_errors`.
    """

    code = "REMOTE_ERROR"
    http_status = 422

    def __init__(
        self,
        message: str,
        user_errors: Optional[list[Any]] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.user_errors = list(user_errors or [])


class PartialFailureError(RemoteError):
    """A multi-step provisioning flow stopped after creating some resources."""

    code = "PARTIAL_FAILURE"

    def __init__(
        self,
        message: str,
        user_errors: Optional[list[Any]] = None,
        segment_id: Optional[str] = None,
        compensated: bool = False,
    ):
        super().__init__(
            message,
            user_errors,
            details={"segment_id": segment_id, "compensated": compensated},
        )
        self.segment_id = segment_id
        self.compensated = compensated


class CorruptStateError(VipPricingError):
    """The stored RuleSet blob cannot be decoded. Requires manual repair."""

    code = "CORRUPT_STATE"
    http_status = 500


class ConcurrentModificationError(VipPricingError):
    """A compare-and-swap write kept losing to concurrent writers."""

    code = "CONCURRENT_MODIFICATION"
    http_status = 409


class TransportError(VipPricingError):
    """HTTP or GraphQL-level failure talking to the commerce platform."""

    code = "TRANSPORT_ERROR"
    http_status = 502


class LogWriteError(VipPricingError):
    """An access log write or read failed. Never escalated past the logger."""

    code = "LOG_WRITE_ERROR"
    http_status = 500
