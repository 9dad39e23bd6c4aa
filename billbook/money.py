"""
Fixed-Point Money Arithmetic

Every balance in the ledger is computed through `operate`.

DESIGN DECISION: Both operands are converted to integer cents BEFORE the
operation runs, and only the integer result is scaled back to an amount.
Binary floating point never touches a balance, so 0.1 + 0.2 is exactly 0.30.

Amounts are `Decimal` values quantized to two places. Inputs may also be
int, str or float; floats go through their shortest repr ("0.1", not
0.1000000000000000055...).
"""

from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Callable, Union

AmountLike = Union[Decimal, int, float, str]

ZERO = Decimal("0.00")


def to_decimal(value: AmountLike) -> Decimal:
    """Convert any supported amount input into a Decimal without float drift."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def to_cents(value: AmountLike) -> int:
    """round(value * 100), rounding halves away from zero."""
    amount = to_decimal(value)
    with localcontext() as ctx:
        # wide enough to hold every digit of the operand and of its cents
        ctx.prec = max(ctx.prec, len(amount.as_tuple().digits), amount.adjusted() + 4)
        return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    sign = "-" if cents < 0 else ""
    whole, fraction = divmod(abs(cents), 100)
    return Decimal(f"{sign}{whole}.{fraction:02d}")


def quantize(value: AmountLike) -> Decimal:
    """Normalize an amount to two fractional digits."""
    return from_cents(to_cents(value))


def integer_add(a: int, b: int) -> int:
    return a + b


def integer_subtract(a: int, b: int) -> int:
    return a - b


def operate(
    a: AmountLike,
    b: AmountLike,
    op: Callable[[int, int], int],
) -> Decimal:
    """
    Apply an integer operation to two amounts.

    Args:
        a: Left operand
        b: Right operand
        op: Strategy working on integer cents (see integer_add/integer_subtract)

    Returns:
        The result as a Decimal with two fractional digits
    """
    return from_cents(op(to_cents(a), to_cents(b)))


def add(a: AmountLike, b: AmountLike) -> Decimal:
    return operate(a, b, integer_add)


def subtract(a: AmountLike, b: AmountLike) -> Decimal:
    return operate(a, b, integer_subtract)


def negate(a: AmountLike) -> Decimal:
    return operate(ZERO, a, integer_subtract)


def total(amounts) -> Decimal:
    """Sum an iterable of amounts through `add`."""
    result = ZERO
    for amount in amounts:
        result = add(result, amount)
    return result
