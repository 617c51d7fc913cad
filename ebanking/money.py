"""
Monetary Amount Helpers

Parsing and rounding for balances and operation amounts. NEVER uses float
for monetary values: floats are converted through their string form.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

from .errors import InvalidAmountError

# Set global decimal context for financial precision
getcontext().prec = 28

PRECISION = 2
QUANTUM = Decimal('0.1') ** PRECISION
ZERO = Decimal('0.00')

AmountLike = Union[Decimal, int, str, float]


def to_amount(value: AmountLike, field: str = "amount") -> Decimal:
    """
    Convert a caller-supplied value to a Decimal rounded to cents

    Raises:
        InvalidAmountError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise InvalidAmountError(f"{field} must be numeric, got a boolean", field=field)
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"{field} is not a valid decimal: {value!r}",
                                     field=field, value=value)
    if not amount.is_finite():
        raise InvalidAmountError(f"{field} must be finite, got {value!r}",
                                 field=field, value=value)
    try:
        return amount.quantize(QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # More digits than the context precision holds at cent scale
        raise InvalidAmountError(f"{field} is too large: {value!r}",
                                 field=field, value=value)


def to_positive_amount(value: AmountLike, field: str = "amount") -> Decimal:
    """Like to_amount, but rejects zero and negative values"""
    amount = to_amount(value, field)
    if amount <= ZERO:
        raise InvalidAmountError(f"{field} must be strictly positive, got {amount}",
                                 field=field, value=amount)
    return amount


def to_non_negative(value: AmountLike, field: str) -> Decimal:
    """Like to_amount, but rejects negative values"""
    amount = to_amount(value, field)
    if amount < ZERO:
        raise InvalidAmountError(f"{field} must not be negative, got {amount}",
                                 field=field, value=amount)
    return amount


def to_rate(value: AmountLike, field: str = "interest_rate") -> Decimal:
    """Parse a non-negative fraction without rounding it to cents"""
    if isinstance(value, bool):
        raise InvalidAmountError(f"{field} must be numeric, got a boolean", field=field)
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(f"{field} is not a valid decimal: {value!r}",
                                 field=field, value=value)
    if not rate.is_finite() or rate < 0:
        raise InvalidAmountError(f"{field} must be a non-negative number, got {value!r}",
                                 field=field, value=value)
    if len(rate.as_tuple().digits) > getcontext().prec:
        raise InvalidAmountError(f"{field} has more digits than the decimal context holds",
                                 field=field, value=value)
    return rate
