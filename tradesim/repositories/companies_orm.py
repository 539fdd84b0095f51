"""Companies and their current stock price using SQLAlchemy ORM."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradesim.core.exceptions import (
    ConflictError,
    InvalidKeyError,
    NotFoundError,
    ValidationError,
)
from tradesim.core.money import format_amount, to_decimal
from tradesim.database.orm import Company as CompanyORM


_LOOKUP_COLUMNS = {
    "id": CompanyORM.id,
    "name": CompanyORM.name,
}


@dataclass
class Company:
    id: int
    name: str
    stock_price: Decimal

    @classmethod
    def from_orm(cls, company: CompanyORM) -> Company:
        return cls(
            id=company.id,
            name=company.name,
            stock_price=to_decimal(company.stock_price or "0"),
        )


class CompanyRepository:
    """Company records and the price resolver used by share transfers."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_company(
        self, name: str, stock_price: Decimal | str | int = "0"
    ) -> Company:
        if not name or not name.strip():
            raise ValidationError("Name must not be empty")

        company = CompanyORM(
            name=name.strip(),
            stock_price=format_amount(to_decimal(stock_price)),
        )
        async with self._session_factory() as session:
            session.add(company)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ConflictError("Company already exists", details={"name": company.name}) from None
            return Company.from_orm(company)

    async def set_stock_price(self, company_id: int, stock_price: Decimal | str | int) -> Company:
        async with self._session_factory() as session:
            company = await session.get(CompanyORM, company_id)
            if company is None:
                raise NotFoundError("Company not found", details={"company_id": company_id})
            company.stock_price = format_amount(to_decimal(stock_price))
            await session.commit()
            return Company.from_orm(company)

    async def get_stock_price(self, key: str, value: Any) -> dict[str, Decimal]:
        """Look up a company by ``id`` or ``name`` and return its unit price.

        Returns:
            ``{"stock_price": Decimal}``
        """
        column = _LOOKUP_COLUMNS.get(key)
        if column is None:
            raise InvalidKeyError(details={"key": key})

        async with self._session_factory() as session:
            result = await session.execute(
                select(CompanyORM.stock_price).where(column == value)
            )
            price = result.scalar_one_or_none()

        if price is None:
            raise NotFoundError("Company not found", details={key: value})
        return {"stock_price": to_decimal(price)}

    async def resolve_price(self, company_id: int) -> Decimal | None:
        """Price resolver for transfers; ``None`` when the company is unknown."""
        try:
            quote = await self.get_stock_price("id", company_id)
        except NotFoundError:
            return None
        return quote["stock_price"]
