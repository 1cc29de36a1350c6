"""Deterministic decimal rounding for order prices, sizes and amounts.

Every value is converted through its shortest string form before rounding,
so binary float noise (``0.1 * 3 == 0.30000000000000004``) never reaches
the scaled integer step and results are identical on every platform.
"""

import math
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

Number = int | float | str | Decimal


def to_decimal(num: Number) -> Decimal:
    """Convert a number to an exact Decimal via its shortest repr."""
    if isinstance(num, Decimal):
        result = num
    elif isinstance(num, float):
        if not math.isfinite(num):
            raise ValueError(f"Cannot round non-finite value {num!r}")
        result = Decimal(repr(num))
    else:
        try:
            result = Decimal(str(num))
        except InvalidOperation as exc:
            raise ValueError(f"Not a number: {num!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Cannot round non-finite value {num!r}")
    return result


def decimal_places(num: Number) -> int:
    """Number of significant digits after the decimal point (0 for integers)."""
    value = to_decimal(num)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(value.as_tuple().digits))
        exponent = value.normalize().as_tuple().exponent
    return max(0, -exponent)


def _rescale(num: Number, decimals: int, rounding: str) -> Decimal:
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")
    value = to_decimal(num)
    if decimal_places(value) <= decimals:
        return value
    # Room for every integer digit plus a carry; the default 28 digits is too few for long inputs
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + decimals + 2)
        return value.quantize(Decimal(1).scaleb(-decimals), rounding=rounding)


def round_down(num: Number, decimals: int) -> Decimal:
    return _rescale(num, decimals, ROUND_FLOOR)


def round_up(num: Number, decimals: int) -> Decimal:
    return _rescale(num, decimals, ROUND_CEILING)


def round_normal(num: Number, decimals: int) -> Decimal:
    """Round half away from zero."""
    return _rescale(num, decimals, ROUND_HALF_UP)
