# tradenorm/domain/numeric.py
"""Exact decimal helpers for prices, sizes, fees and PnL."""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Tuple

ZERO = Decimal(0)


def to_decimal(value) -> Decimal:
    """
    Convert a price/amount/fee value to Decimal.

    Floats go through ``str()`` so 0.1 becomes Decimal("0.1"), not its binary
    expansion. Raises ValueError for None, garbage, NaN and infinities.
    """
    if value is None:
        raise ValueError("value is None")
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"non-finite number: {value!r}")
    return result


def safe_div(num: Decimal, den: Decimal) -> Decimal:
    """num / den, or 0 when den is 0."""
    if den == 0:
        return ZERO
    return num / den


def weighted_average(pairs: Iterable[Tuple[Decimal, Decimal]]) -> Decimal:
    """Size-weighted mean of (price, size) pairs; 0 if total size is 0."""
    total_size = ZERO
    total_value = ZERO
    for price, size in pairs:
        total_size += size
        total_value += price * size
    return safe_div(total_value, total_size)
