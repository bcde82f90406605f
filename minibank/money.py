"""
Money Handling Utilities

All monetary values are Decimal with two fractional digits; float never
enters balance arithmetic. Amount validation for deposits lives here so the
ledger and the HTTP layer apply the same rules.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, getcontext
from typing import Union

from .errors import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

AmountLike = Union[Decimal, int, float, str]



def parse_amount(value: AmountLike) -> Decimal:
    """
    Convert a value to a finite Decimal without rounding it.

    Floats are converted through their string form so 0.1 stays 0.1.
    Raises InvalidAmount for anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise InvalidAmount("Amount must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount("Amount must be a number")
    if not amount.is_finite():
        raise InvalidAmount("Amount must be a finite number")
    return amount


def as_money(value: AmountLike) -> Decimal:
    """Normalize a value to a Decimal with 2 fractional digits"""
    try:
        return parse_amount(value).quantize(CENT, rounding=ROUND_HALF_EVEN)
    except InvalidOperation:
        raise InvalidAmount("Amount is too large")


def validate_deposit_amount(value: AmountLike,
                            minimum: AmountLike = "0.01",
                            maximum: AmountLike = "100000.00") -> Decimal:
    """
    Validate a deposit amount and return it normalized.

    Rules:
    - Must be a finite number with at most 2 decimal places; sub-cent
      amounts are rejected, never rounded.
    - Must be >= minimum (positive).
    - Must be <= maximum.
    """
    raw = parse_amount(value)
    amount = as_money(raw)
    if amount != raw:
        raise InvalidAmount("Amount must have at most 2 decimal places")
    if amount <= ZERO:
        raise InvalidAmount("Amount must be greater than zero")
    if amount < as_money(minimum):
        raise InvalidAmount(f"Amount must be >= {as_money(minimum)}")
    if amount > as_money(maximum):
        raise InvalidAmount(f"Amount must be <= {as_money(maximum)}")
    return amount


def format_money(value: Decimal) -> str:
    """Render a balance for JSON responses, e.g. Decimal('75.5') -> '75.50'"""
    return str(as_money(value))
