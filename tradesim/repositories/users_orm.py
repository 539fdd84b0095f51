"""User accounts and cash balances using SQLAlchemy ORM.

Funds are stored as decimal strings and only ever handled as ``Decimal``.
``UserRepository.transfer_funds`` is the funds service used by share transfers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradesim.core.exceptions import (
    ConflictError,
    FundsTransferFailedError,
    NotFoundError,
    ValidationError,
)
from tradesim.core.logging import get_logger
from tradesim.core.money import ZERO, format_amount, to_decimal
from tradesim.database.orm import User as UserORM


logger = get_logger("repositories.users_orm")


@dataclass
class UserAccount:
    """Trading account with its cash balance."""

    id: int
    name: str
    email: str
    is_root: bool = False
    risk: int = 0
    funds: Decimal = ZERO
    updated_at: datetime | None = None

    @classmethod
    def from_orm(cls, user: UserORM) -> UserAccount:
        """Create from ORM model."""
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            is_root=user.is_root or False,
            risk=user.risk or 0,
            funds=to_decimal(user.funds or "0"),
            updated_at=user.updated_at,
        )


class UserRepository:
    """Accounts and the funds service over the ``users`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_user(
        self,
        name: str,
        email: str,
        password: str,
        *,
        is_root: bool = False,
        risk: int = 0,
        funds: Decimal | str | int = "0",
    ) -> UserAccount:
        """Register an account. ``password`` is stored as given."""
        if not name or not name.strip():
            raise ValidationError("Name must not be empty")

        user = UserORM(
            name=name.strip(),
            email=email.strip().lower(),
            password=password,
            is_root=is_root,
            risk=risk,
            funds=format_amount(to_decimal(funds)),
        )
        async with self._session_factory() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ConflictError("Email already registered", details={"email": user.email}) from None
            await session.refresh(user)
            return UserAccount.from_orm(user)

    async def get_user(self, user_id: int) -> UserAccount | None:
        """Get a user by ID."""
        async with self._session_factory() as session:
            user = await session.get(UserORM, user_id)
            return UserAccount.from_orm(user) if user else None

    async def get_user_by_email(self, email: str) -> UserAccount | None:
        """Get a user by email."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserORM).where(UserORM.email == email.strip().lower())
            )
            user = result.scalar_one_or_none()
            return UserAccount.from_orm(user) if user else None

    async def get_funds(self, user_id: int) -> Decimal:
        user = await self.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user.funds

    async def add_funds(self, user_id: int, amount: Decimal | str | int) -> Decimal:
        """Credit (or, with a negative amount, debit) a balance. Returns the new balance."""
        delta = to_decimal(amount)

        async with self._session_factory() as session:
            result = await session.execute(
                select(UserORM).where(UserORM.id == user_id).with_for_update()
            )
            user = result.scalar_one_or_none()
            if user is None:
                raise NotFoundError("User not found", details={"user_id": user_id})

            balance = to_decimal(user.funds) + delta
            if balance < ZERO:
                raise ValidationError(
                    "Insufficient funds",
                    details={"user_id": user_id, "funds": format_amount(balance - delta)},
                )
            user.funds = format_amount(balance)
            await session.commit()
            return balance

    async def transfer_funds(
        self, from_user_id: int, to_user_id: int, amount: Decimal | str | int
    ) -> bool:
        """Move ``amount`` from one balance to another in a single transaction.

        Raises:
            FundsTransferFailedError: bad amount, unknown user, or the payer
                can't cover the amount. Neither balance changes.
        """
        try:
            value = to_decimal(amount)
        except ValueError as e:
            raise FundsTransferFailedError(str(e)) from e
        if value <= ZERO:
            raise FundsTransferFailedError(
                "Amount must be positive", details={"amount": str(amount)}
            )
        if from_user_id == to_user_id:
            raise FundsTransferFailedError("Cannot transfer funds to the same user")

        async with self._session_factory() as session:
            # Lock both rows in id order so opposite transfers can't deadlock
            result = await session.execute(
                select(UserORM)
                .where(UserORM.id.in_([from_user_id, to_user_id]))
                .order_by(UserORM.id)
                .with_for_update()
            )
            users = {u.id: u for u in result.scalars().all()}

            payer = users.get(from_user_id)
            payee = users.get(to_user_id)
            if payer is None or payee is None:
                missing = from_user_id if payer is None else to_user_id
                raise FundsTransferFailedError(
                    "User not found", details={"user_id": missing}
                )

            payer_funds = to_decimal(payer.funds)
            if payer_funds < value:
                raise FundsTransferFailedError(
                    "Insufficient funds",
                    details={
                        "user_id": from_user_id,
                        "funds": format_amount(payer_funds),
                        "amount": format_amount(value),
                    },
                )

            payer.funds = format_amount(payer_funds - value)
            payee.funds = format_amount(to_decimal(payee.funds) + value)
            await session.commit()

        logger.info(f"Transferred {format_amount(value)} from user {from_user_id} to user {to_user_id}")
        return True
