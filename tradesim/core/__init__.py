"""Core infrastructure: settings, logging, exceptions, money."""

from .config import settings
from .exceptions import (
    AppException,
    ConflictError,
    ExternalServiceError,
    FundsTransferFailedError,
    InsufficientSharesError,
    InvalidKeyError,
    InvalidQuantityError,
    NotFoundError,
    PartialReassignmentFailure,
    PriceUnavailableError,
    SelfTransferError,
    ValidationError,
)


__all__ = [
    "AppException",
    "ConflictError",
    "ExternalServiceError",
    "FundsTransferFailedError",
    "InsufficientSharesError",
    "InvalidKeyError",
    "InvalidQuantityError",
    "NotFoundError",
    "PartialReassignmentFailure",
    "PriceUnavailableError",
    "SelfTransferError",
    "ValidationError",
    "settings",
]
