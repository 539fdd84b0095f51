"""Database module: SQLAlchemy async engine, sessions and ORM models."""

from .connection import (
    close_sqlalchemy_engine,
    create_engine,
    create_session_factory,
    get_async_database_url,
    get_session,
    get_session_factory,
    init_sqlalchemy_engine,
)
from .orm import Base, Company, Stock, User


__all__ = [
    # SQLAlchemy
    "init_sqlalchemy_engine",
    "close_sqlalchemy_engine",
    "create_engine",
    "create_session_factory",
    "get_async_database_url",
    "get_session",
    "get_session_factory",
    "Base",
    # ORM models
    "Company",
    "Stock",
    "User",
]
