"""Exact decimal arithmetic for funds and prices.

Amounts are persisted as decimal strings. Floats are only ever converted through
``str`` so that ``0.1`` becomes ``Decimal("0.1")`` rather than its binary
approximation.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation


ZERO = Decimal("0")


def to_decimal(value: Decimal | str | int | float) -> Decimal:
    """Parse an amount exactly.

    Raises:
        ValueError: value is empty, not numeric, or not finite.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not an amount: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"Not an amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return amount


def multiply(price: Decimal | str | int | float, quantity: int) -> Decimal:
    """Unit price times quantity."""
    return to_decimal(price) * quantity


def format_amount(amount: Decimal) -> str:
    """Render an amount for the decimal-as-string columns."""
    # Decimal("1E+1") would otherwise be stored in scientific notation
    return format(amount, "f")
