"""Pytest configuration and fixtures."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tradesim.database.connection import create_session_factory
from tradesim.database.orm import Base
from tradesim.main import Services, build_services


@pytest.fixture(scope="function", autouse=True)
def reset_process_engine() -> Generator[None, None, None]:
    """Make sure no test leaks the process-wide engine into the next one."""
    import tradesim.database.connection as db_conn

    db_conn._engine = None
    db_conn._session_factory = None
    yield
    db_conn._engine = None
    db_conn._session_factory = None


@pytest.fixture
def preserve_root_logging() -> Generator[None, None, None]:
    """Restore root logger handlers after a test calls setup_logging()."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite database file with the full schema, one per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tradesim.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def services(session_factory: async_sessionmaker[AsyncSession]) -> Services:
    return build_services(session_factory)


@dataclass
class Market:
    """Seeded state: the seller owns 5 shares of ``company_id`` priced at 10."""

    seller_id: int
    buyer_id: int
    other_buyer_id: int
    company_id: int
    other_company_id: int
    seller_stock_ids: list[int]


@pytest_asyncio.fixture
async def market(services: Services) -> Market:
    seller = await services.users.create_user("Seller", "seller@example.com", "x", funds="0")
    buyer = await services.users.create_user("Buyer", "buyer@example.com", "x", funds="1000")
    other = await services.users.create_user("Other", "other@example.com", "x", funds="1000")

    company = await services.companies.create_company("Acme", stock_price=Decimal("10"))
    other_company = await services.companies.create_company("Globex", stock_price="4.25")

    stock_ids = await services.ledger.issue_stocks(company.id, seller.id, 5)
    await services.ledger.issue_stocks(other_company.id, seller.id, 2)
    await services.ledger.issue_stocks(other_company.id, other.id, 4)

    return Market(
        seller_id=seller.id,
        buyer_id=buyer.id,
        other_buyer_id=other.id,
        company_id=company.id,
        other_company_id=other_company.id,
        seller_stock_ids=stock_ids,
    )
