"""Currency amount helpers"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from bcard_gateway.domain.exceptions import InvalidAmountError

CENT = Decimal("0.01")


def quantize(amount: Decimal) -> Decimal:
    """Round to currency precision (half-up, 2 decimals)"""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any) -> Decimal:
    """
    Parse a positive currency amount.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.

    Raises:
        InvalidAmountError: If the value is not a finite number greater than zero
    """
    if isinstance(value, bool):
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(f"Invalid amount: {value!r}")

    if not amount.is_finite():
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if amount <= 0:
        raise InvalidAmountError(f"Amount must be greater than zero, got {amount}")
    return amount


def to_cents(amount: Decimal) -> int:
    """Convert a currency amount to integer minor units"""
    return int(quantize(amount) * 100)


def from_cents(cents: int) -> Decimal:
    """Convert integer minor units to a currency amount"""
    return (Decimal(cents) / 100).quantize(CENT)


def format_usd(amount: Decimal) -> str:
    return f"${quantize(amount):,.2f}"
