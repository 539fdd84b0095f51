"""Typed failures raised by the ledger, the funds service and transfers."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception with structured error payload."""

    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a problem+json style payload."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class NotFoundError(AppException):
    """Resource not found."""

    error_code = "NOT_FOUND"
    message = "Not found"


class ValidationError(AppException):
    """Validation failed."""

    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class ConflictError(AppException):
    """Request conflicts with current state."""

    error_code = "CONFLICT"
    message = "Resource conflict"


class ExternalServiceError(AppException):
    """A collaborator (funds, pricing) failed."""

    error_code = "EXTERNAL_SERVICE_ERROR"
    message = "External service temporarily unavailable"


# =============================================================================
# LEDGER & TRANSFERS
# =============================================================================


class InvalidKeyError(ValidationError):
    """Filter field is not a known stock column."""

    error_code = "INVALID_KEY"
    message = "Invalid key"


class SelfTransferError(ValidationError):
    """Seller and buyer are the same user."""

    error_code = "SELF_TRANSFER"
    message = "Seller and buyer can't be the same user"


class InvalidQuantityError(ValidationError):
    error_code = "INVALID_QUANTITY"
    message = "Quantity must be a positive integer"


class InsufficientSharesError(ConflictError):
    error_code = "INSUFFICIENT_SHARES"
    message = "Not enough stock to sell"


class PriceUnavailableError(ExternalServiceError):
    error_code = "PRICE_UNAVAILABLE"
    message = "Stock price unavailable"


class FundsTransferFailedError(ExternalServiceError):
    error_code = "FUNDS_TRANSFER_FAILED"
    message = "Funds transfer failed"


class PartialReassignmentFailure(AppException):
    """Some share rows did not change owner.

    The operation is half-applied and needs remediation; ``succeeded`` lists the
    rows now owned by the new owner and ``failed`` maps every other requested
    row to the reason it failed.
    """

    error_code = "PARTIAL_REASSIGNMENT"
    message = "Share reassignment partially failed"

    def __init__(
        self,
        succeeded: list[int],
        failed: dict[int, str],
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.succeeded = list(succeeded)
        self.failed = dict(failed)
        super().__init__(
            message=message,
            details={
                "succeeded": self.succeeded,
                "failed": {str(k): v for k, v in self.failed.items()},
                **(details or {}),
            },
        )
