"""
Reduction arithmetic.

Reductions are additive deltas computed against the tariff's original base
price, never against a running discounted total.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from .errors import MalformedTreeError
from .models import Reduction, ReductionKind

ZERO = Decimal("0")
DEFAULT_QUANTUM = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Exact decimal for ``value``; floats convert through their shortest repr."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value, quantum: Decimal = DEFAULT_QUANTUM) -> Decimal:
    """Quantize ``value`` to the money quantum, rounding half up."""
    return to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


def amount(reduction: Optional[Reduction], base_price: Decimal, quantum: Decimal = DEFAULT_QUANTUM) -> Decimal:
    """Monetary delta of ``reduction`` for a tariff priced ``base_price``."""
    if reduction is None:
        return ZERO
    if reduction.amount is None:
        raise MalformedTreeError("reduction requires 'amount'")

    if reduction.kind == ReductionKind.FIXED:
        return to_money(reduction.amount, quantum)
    if reduction.kind == ReductionKind.PERCENTAGE:
        return to_money(to_decimal(base_price) * reduction.amount / Decimal(100), quantum)

    raise MalformedTreeError(f"Unknown reduction kind '{reduction.kind}'")


def accumulate(deltas: Iterable[Decimal]) -> Decimal:
    """Fold reduction deltas into a cumulative total."""
    total = ZERO
    for delta in deltas:
        total += delta
    return total


def final_price(base_price: Decimal, total_reduction: Decimal) -> Decimal:
    """Price after reductions, floored at zero."""
    return max(ZERO, to_decimal(base_price) - total_reduction)
