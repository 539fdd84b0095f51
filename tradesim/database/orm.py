"""SQLAlchemy ORM models for Tradesim.

Uses SQLAlchemy 2.0 declarative style. Money columns hold decimal strings and are
parsed with ``tradesim.core.money`` rather than the driver's numeric handling.

Usage:
    from tradesim.database.orm import Stock

    async with session_factory() as session:
        stock = await session.get(Stock, 1)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    func,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class User(Base):
    """Trading account with a cash balance."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    is_root: Mapped[bool] = mapped_column(Boolean, nullable=False)
    risk: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    funds: Mapped[str] = mapped_column(String(64), nullable=False, default="0", server_default="0")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    stocks: Mapped[list[Stock]] = relationship(back_populates="owner")


class Company(Base):
    """Issuer of share units; carries the current unit price."""
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    stock_price: Mapped[str] = mapped_column(String(64), nullable=False, default="0", server_default="0")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    stocks: Mapped[list[Stock]] = relationship(back_populates="company")


class Stock(Base):
    """One indivisible share unit."""
    __tablename__ = "stocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    owner: Mapped[User] = relationship(back_populates="stocks")
    company: Mapped[Company] = relationship(back_populates="stocks")

    __table_args__ = (
        Index("idx_stocks_owner_company", "owner_id", "company_id"),
        Index("idx_stocks_company_owner", "company_id", "owner_id"),
    )
