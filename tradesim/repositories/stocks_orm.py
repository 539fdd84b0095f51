"""Ownership ledger over share-unit rows using SQLAlchemy ORM.

Every row of ``stocks`` is one share unit with exactly one owner. Reads return
plain dataclasses; the only write besides issuance is ``bulk_reassign``.

Usage:
    ledger = StockLedger(session_factory)
    holdings = await ledger.get_stocks_from_owner(user_id)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradesim.core.config import settings
from tradesim.core.exceptions import (
    InvalidKeyError,
    InvalidQuantityError,
    NotFoundError,
    PartialReassignmentFailure,
)
from tradesim.core.logging import get_logger
from tradesim.database.orm import Stock as StockORM


logger = get_logger("repositories.stocks_orm")


class StockField(str, Enum):
    """Columns a stock lookup may filter on."""

    ID = "id"
    OWNER_ID = "owner_id"
    COMPANY_ID = "company_id"

    @classmethod
    def _missing_(cls, value: object) -> StockField | None:
        aliases = {"ownerId": cls.OWNER_ID, "companyId": cls.COMPANY_ID}
        return aliases.get(value) if isinstance(value, str) else None

    @property
    def column(self):
        return {
            StockField.ID: StockORM.id,
            StockField.OWNER_ID: StockORM.owner_id,
            StockField.COMPANY_ID: StockORM.company_id,
        }[self]


@dataclass(frozen=True)
class StockUnit:
    """A single share unit."""

    id: int
    owner_id: int
    company_id: int

    @classmethod
    def from_row(cls, row: Any) -> StockUnit:
        return cls(id=row.id, owner_id=row.owner_id, company_id=row.company_id)


@dataclass(frozen=True)
class Holding:
    """Number of share units one owner holds in one company."""

    owner_id: int
    company_id: int
    owned: int


class StockLedger:
    """Read/write interface over share-unit rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        concurrency: int | None = None,
    ):
        self._session_factory = session_factory
        self._concurrency = concurrency or settings.reassign_concurrency

    # ───────────────────────────────────────────────────────────────────────
    # Point lookups
    # ───────────────────────────────────────────────────────────────────────

    async def get_stocks(self) -> list[StockUnit]:
        """All share units ordered by id."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(StockORM.id, StockORM.owner_id, StockORM.company_id)
                .order_by(StockORM.id)
            )
            return [StockUnit.from_row(r) for r in result.all()]

    async def get_stocks_by_attribute(
        self, key: StockField | str, value: int
    ) -> list[StockUnit]:
        """Share units whose ``key`` column equals ``value``, ordered by id.

        Raises:
            InvalidKeyError: key is not a stock column.
            NotFoundError: nothing matched.
        """
        try:
            field = StockField(key)
        except ValueError:
            raise InvalidKeyError(details={"key": str(key)}) from None

        async with self._session_factory() as session:
            result = await session.execute(
                select(StockORM.id, StockORM.owner_id, StockORM.company_id)
                .where(field.column == value)
                .order_by(StockORM.id)
            )
            rows = result.all()

        if not rows:
            raise NotFoundError(details={"key": field.value, "value": value})
        return [StockUnit.from_row(r) for r in rows]

    # ───────────────────────────────────────────────────────────────────────
    # Grouped ownership counts
    # ───────────────────────────────────────────────────────────────────────

    async def _get_stocks_by(
        self, attribute: StockField, where: Any = None
    ) -> list[Holding]:
        if attribute is StockField.OWNER_ID:
            group = (StockORM.owner_id, StockORM.company_id)
        else:
            group = (StockORM.company_id, StockORM.owner_id)

        query = (
            select(StockORM.owner_id, StockORM.company_id, func.count(StockORM.id).label("owned"))
            .group_by(*group)
            .order_by(*group)
        )
        if where is not None:
            query = query.where(where)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [
                Holding(owner_id=r.owner_id, company_id=r.company_id, owned=int(r.owned))
                for r in result.all()
            ]

    async def get_stocks_by_owner(self) -> list[Holding]:
        """Ownership counts grouped by (owner, company), ordered by owner."""
        return await self._get_stocks_by(StockField.OWNER_ID)

    async def get_stocks_by_company(self) -> list[Holding]:
        """Ownership counts grouped by (company, owner), ordered by company."""
        return await self._get_stocks_by(StockField.COMPANY_ID)

    async def get_stocks_from_owner(self, owner_id: int) -> list[Holding]:
        return await self._get_stocks_by(
            StockField.OWNER_ID, StockORM.owner_id == owner_id
        )

    async def get_stocks_from_company(self, company_id: int) -> list[Holding]:
        return await self._get_stocks_by(
            StockField.COMPANY_ID, StockORM.company_id == company_id
        )

    async def get_total_stocks_from_owner(self, owner_id: int) -> int:
        holdings = await self.get_stocks_from_owner(owner_id)
        return sum(h.owned for h in holdings)

    async def get_total_stocks_from_company(self, company_id: int) -> int:
        holdings = await self.get_stocks_from_company(company_id)
        return sum(h.owned for h in holdings)

    # ───────────────────────────────────────────────────────────────────────
    # Writes
    # ───────────────────────────────────────────────────────────────────────

    async def issue_stocks(self, company_id: int, owner_id: int, quantity: int) -> list[int]:
        """Create ``quantity`` new share units of a company for one owner."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(details={"quantity": quantity})

        async with self._session_factory() as session:
            stocks = [
                StockORM(owner_id=owner_id, company_id=company_id)
                for _ in range(quantity)
            ]
            session.add_all(stocks)
            await session.flush()
            ids = sorted(s.id for s in stocks)
            await session.commit()

        logger.info(f"Issued {quantity} shares of company {company_id} to user {owner_id}")
        return ids

    async def _reassign_one(
        self,
        stock_id: int,
        new_owner_id: int,
        expected_owner_id: int | None,
        semaphore: asyncio.Semaphore,
    ) -> None:
        conditions = [StockORM.id == stock_id]
        if expected_owner_id is not None:
            conditions.append(StockORM.owner_id == expected_owner_id)

        async with semaphore, self._session_factory() as session:
            result = await session.execute(
                update(StockORM)
                .where(*conditions)
                .values(owner_id=new_owner_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                if expected_owner_id is None:
                    raise NotFoundError(f"Stock {stock_id} not found")
                raise NotFoundError(
                    f"Stock {stock_id} not found or not owned by user {expected_owner_id}"
                )
            await session.commit()

    async def bulk_reassign(
        self,
        stock_ids: list[int],
        new_owner_id: int,
        *,
        expected_owner_id: int | None = None,
    ) -> list[int]:
        """Set the owner of every given share unit to ``new_owner_id``.

        Each row is its own conditional write; writes run concurrently and are
        all awaited. Company ids are never touched.

        Args:
            stock_ids: Share units to move.
            new_owner_id: Owner after the write.
            expected_owner_id: When set, only rows still owned by this user
                are written; a row another writer already moved fails, even
                when it went to ``new_owner_id``.

        Returns:
            The reassigned ids, in the order given.

        Raises:
            PartialReassignmentFailure: at least one row failed; carries the
                ids that did move and a reason for each that didn't.
        """
        if not stock_ids:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)
        outcomes = await asyncio.gather(
            *(
                self._reassign_one(stock_id, new_owner_id, expected_owner_id, semaphore)
                for stock_id in stock_ids
            ),
            return_exceptions=True,
        )

        succeeded: list[int] = []
        failed: dict[int, str] = {}
        for stock_id, outcome in zip(stock_ids, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                failed[stock_id] = str(outcome) or type(outcome).__name__
            else:
                succeeded.append(stock_id)

        if failed:
            logger.warning(
                f"Reassigned {len(succeeded)}/{len(stock_ids)} shares to user {new_owner_id}; "
                f"failed: {sorted(failed)}"
            )
            raise PartialReassignmentFailure(succeeded=succeeded, failed=failed)

        logger.debug(f"Reassigned {len(succeeded)} shares to user {new_owner_id}")
        return succeeded
