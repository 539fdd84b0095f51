"""Data access layer repositories.

Each repository is constructed with the process-wide session factory and
returns plain dataclasses rather than ORM objects.

- companies_orm: companies and their current stock price
- stocks_orm: the ownership ledger over share-unit rows
- users_orm: accounts, balances and the funds service
"""

from .companies_orm import Company, CompanyRepository
from .stocks_orm import Holding, StockField, StockLedger, StockUnit
from .users_orm import UserAccount, UserRepository

__all__ = [
    "Company",
    "CompanyRepository",
    "Holding",
    "StockField",
    "StockLedger",
    "StockUnit",
    "UserAccount",
    "UserRepository",
]
