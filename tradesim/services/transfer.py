"""Share transfers: sell N shares of a company from one user to another.

A transfer validates the sale, prices it, moves the money from buyer to seller
and then reassigns share units to the buyer. Transfers of the same company are
serialized by an in-process lock held from the holdings check until settlement
finishes; per-row ownership writes are additionally conditional on the seller
still owning the row.

Once money has moved, settlement (share selection, reassignment, and refund when
nothing could be moved) runs to completion even if the caller is cancelled.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from tradesim.core.config import settings
from tradesim.core.exceptions import (
    FundsTransferFailedError,
    InsufficientSharesError,
    InvalidQuantityError,
    NotFoundError,
    PartialReassignmentFailure,
    PriceUnavailableError,
    SelfTransferError,
)
from tradesim.core.logging import get_logger, operation_id_var
from tradesim.core.money import ZERO, format_amount, multiply, to_decimal
from tradesim.repositories.stocks_orm import StockField, StockLedger


logger = get_logger("services.transfer")


PriceResolver = Callable[[int], Awaitable[Any]]


class FundsService(Protocol):
    async def transfer_funds(
        self, from_user_id: int, to_user_id: int, amount: Decimal | str
    ) -> bool: ...


@dataclass(frozen=True)
class TransferResult:
    seller_id: int
    buyer_id: int
    company_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    stock_ids: list[int] = field(default_factory=list)
    message: str = "Stocks successfully transferred."


class TransferService:
    """Orchestrates ledger reads, the funds service and ledger writes."""

    def __init__(
        self,
        ledger: StockLedger,
        funds: FundsService,
        price_resolver: PriceResolver | None = None,
        *,
        retry_attempts: int | None = None,
    ):
        self._ledger = ledger
        self._funds = funds
        self._price_resolver = price_resolver
        self._retry_attempts = (
            settings.reassign_retry_attempts if retry_attempts is None else retry_attempts
        )
        # Entries live only while a transfer of that company holds or awaits the lock
        self._company_locks: dict[int, asyncio.Lock] = {}
        self._lock_users: defaultdict[int, int] = defaultdict(int)

    async def transfer_ownership(
        self,
        seller_id: int,
        buyer_id: int,
        company_id: int,
        quantity: int,
        price_resolver: PriceResolver | None = None,
    ) -> TransferResult:
        """Sell ``quantity`` shares of ``company_id`` from seller to buyer.

        Raises:
            SelfTransferError: seller and buyer are the same user.
            InvalidQuantityError: quantity is not a positive integer.
            InsufficientSharesError: seller holds fewer than ``quantity`` shares.
            PriceUnavailableError: no usable positive unit price.
            FundsTransferFailedError: payment (or a compensating refund) failed.
            PartialReassignmentFailure: payment went through but some shares
                could not be moved.
        """
        if seller_id == buyer_id:
            raise SelfTransferError(details={"user_id": seller_id})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(details={"quantity": quantity})

        token = operation_id_var.set(uuid.uuid4().hex)
        try:
            async with self._company_lock(company_id):
                return await self._transfer_locked(
                    seller_id, buyer_id, company_id, quantity, price_resolver
                )
        finally:
            operation_id_var.reset(token)

    @asynccontextmanager
    async def _company_lock(self, company_id: int) -> AsyncIterator[None]:
        lock = self._company_locks.setdefault(company_id, asyncio.Lock())
        self._lock_users[company_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[company_id] -= 1
            if not self._lock_users[company_id]:
                del self._lock_users[company_id]
                del self._company_locks[company_id]

    async def _transfer_locked(
        self,
        seller_id: int,
        buyer_id: int,
        company_id: int,
        quantity: int,
        price_resolver: PriceResolver | None,
    ) -> TransferResult:
        holdings = await self._ledger.get_stocks_from_owner(seller_id)
        owned = sum(h.owned for h in holdings if h.company_id == company_id)
        if owned < quantity:
            raise InsufficientSharesError(
                details={"seller_id": seller_id, "company_id": company_id, "owned": owned, "quantity": quantity}
            )

        unit_price = await self._resolve_price(price_resolver, company_id)
        total_price = multiply(unit_price, quantity)

        await self._pay(buyer_id, seller_id, total_price)
        logger.info(
            f"User {buyer_id} paid {format_amount(total_price)} to user {seller_id} "
            f"for {quantity} shares of company {company_id}",
            extra={
                "seller_id": seller_id,
                "buyer_id": buyer_id,
                "company_id": company_id,
                "quantity": quantity,
                "amount": format_amount(total_price),
            },
        )

        settlement = asyncio.ensure_future(
            self._settle(seller_id, buyer_id, company_id, quantity, unit_price, total_price)
        )
        try:
            return await asyncio.shield(settlement)
        except asyncio.CancelledError:
            if not settlement.done():
                logger.warning("Transfer cancelled after payment; finishing settlement first")
                await asyncio.wait([settlement])
            if not settlement.cancelled() and settlement.exception() is not None:
                logger.error(f"Settlement of cancelled transfer failed: {settlement.exception()}")
            raise

    async def _resolve_price(
        self, price_resolver: PriceResolver | None, company_id: int
    ) -> Decimal:
        resolver = price_resolver or self._price_resolver
        if resolver is None:
            raise PriceUnavailableError("No price resolver configured")

        try:
            raw = await resolver(company_id)
        except Exception as e:
            raise PriceUnavailableError(details={"company_id": company_id}) from e

        if isinstance(raw, Mapping):
            raw = raw.get("stock_price")
        if raw is None:
            raise PriceUnavailableError(details={"company_id": company_id})

        try:
            price = to_decimal(raw)
        except ValueError as e:
            raise PriceUnavailableError(details={"company_id": company_id, "price": str(raw)}) from e
        if price <= ZERO:
            raise PriceUnavailableError(details={"company_id": company_id, "price": str(raw)})
        return price

    async def _pay(self, from_user_id: int, to_user_id: int, amount: Decimal) -> None:
        details = {"from_user_id": from_user_id, "to_user_id": to_user_id, "amount": format_amount(amount)}
        try:
            ok = await self._funds.transfer_funds(from_user_id, to_user_id, format_amount(amount))
        except FundsTransferFailedError:
            raise
        except Exception as e:
            raise FundsTransferFailedError(details=details) from e
        if not ok:
            raise FundsTransferFailedError(details=details)

    async def _refund(self, buyer_id: int, seller_id: int, amount: Decimal) -> None:
        try:
            await self._pay(seller_id, buyer_id, amount)
        except FundsTransferFailedError as e:
            logger.error(
                f"Refund of {format_amount(amount)} from user {seller_id} to user {buyer_id} failed",
                exc_info=True,
            )
            raise FundsTransferFailedError(
                "Refund failed after shares could not be moved", details=e.details
            ) from e
        logger.info(f"Refunded {format_amount(amount)} to user {buyer_id}")

    async def _settle(
        self,
        seller_id: int,
        buyer_id: int,
        company_id: int,
        quantity: int,
        unit_price: Decimal,
        total_price: Decimal,
    ) -> TransferResult:
        # Re-read: holdings may have changed outside this process since the check
        try:
            units = await self._ledger.get_stocks_by_attribute(StockField.OWNER_ID, seller_id)
        except NotFoundError:
            units = []
        selected = sorted(
            (u.id for u in units if u.company_id == company_id)
        )[:quantity]

        if len(selected) < quantity:
            await self._refund(buyer_id, seller_id, total_price)
            raise InsufficientSharesError(
                details={"seller_id": seller_id, "company_id": company_id, "owned": len(selected), "quantity": quantity}
            )

        moved = await self._reassign(selected, seller_id, buyer_id, total_price)

        logger.info(
            f"Moved {len(moved)} shares of company {company_id} from user {seller_id} to user {buyer_id}",
            extra={"seller_id": seller_id, "buyer_id": buyer_id, "company_id": company_id, "quantity": len(moved)},
        )
        return TransferResult(
            seller_id=seller_id,
            buyer_id=buyer_id,
            company_id=company_id,
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            stock_ids=moved,
        )

    async def _reassign(
        self,
        stock_ids: list[int],
        seller_id: int,
        buyer_id: int,
        total_price: Decimal,
    ) -> list[int]:
        pending = list(stock_ids)
        moved: list[int] = []
        failed: dict[int, str] = {}

        for attempt in range(self._retry_attempts + 1):
            try:
                moved.extend(
                    await self._ledger.bulk_reassign(pending, buyer_id, expected_owner_id=seller_id)
                )
                failed = {}
                break
            except PartialReassignmentFailure as e:
                moved.extend(e.succeeded)
                failed = e.failed
                pending = [sid for sid in pending if sid in failed]
                logger.warning(
                    f"Reassignment attempt {attempt + 1} left {len(pending)} shares unmoved"
                )

        if failed:
            refunded = False
            if not moved:
                await self._refund(buyer_id, seller_id, total_price)
                refunded = True
            raise PartialReassignmentFailure(
                succeeded=sorted(moved),
                failed=failed,
                details={"seller_id": seller_id, "buyer_id": buyer_id, "refunded": refunded},
            )

        return sorted(moved)
