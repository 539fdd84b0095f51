"""Process bootstrap: build the store handle once and wire the services.

Usage:
    async with lifespan() as services:
        await services.transfers.transfer_ownership(seller_id, buyer_id, company_id, 3)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from tradesim.core.config import Settings, settings as default_settings
from tradesim.core.logging import get_logger, setup_logging
from tradesim.database.connection import (
    close_sqlalchemy_engine,
    get_session_factory,
    init_sqlalchemy_engine,
)
from tradesim.repositories import CompanyRepository, StockLedger, UserRepository
from tradesim.services import TransferService


logger = get_logger("main")


@dataclass
class Services:
    ledger: StockLedger
    users: UserRepository
    companies: CompanyRepository
    transfers: TransferService


def build_services(session_factory, config: Settings | None = None) -> Services:
    """Wire repositories and the transfer service around one session factory."""
    config = config or default_settings
    ledger = StockLedger(session_factory, concurrency=config.reassign_concurrency)
    users = UserRepository(session_factory)
    companies = CompanyRepository(session_factory)
    transfers = TransferService(
        ledger,
        users,
        companies.resolve_price,
        retry_attempts=config.reassign_retry_attempts,
    )
    return Services(ledger=ledger, users=users, companies=companies, transfers=transfers)


@asynccontextmanager
async def lifespan(config: Settings | None = None) -> AsyncIterator[Services]:
    """Application lifespan manager."""
    config = config or default_settings
    setup_logging(config)
    logger.info(f"Starting {config.app_name} v{config.app_version}")
    logger.info(f"Environment: {config.environment}")

    await init_sqlalchemy_engine(config)
    try:
        yield build_services(await get_session_factory(), config)
    finally:
        await close_sqlalchemy_engine()
        logger.info("Shutdown complete")
