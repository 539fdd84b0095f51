"""Business services composed from repositories."""

from .transfer import FundsService, PriceResolver, TransferResult, TransferService

__all__ = [
    "FundsService",
    "PriceResolver",
    "TransferResult",
    "TransferService",
]
