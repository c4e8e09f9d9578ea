"""
Advertised price range of a tariff, computed without a subject.

The range is conservative: each top-level node contributes its own largest
possible reduction, independently of the others. It is for display only;
the chain walker is authoritative.
"""

from decimal import Decimal
from typing import Any

from .engine import DEFAULT_MAX_DEPTH, top_level_nodes
from .errors import TreeDepthExceededError
from .models import DisplayMode, Node, PriceBounds
from .reductions import DEFAULT_QUANTUM, ZERO, amount, to_decimal


def max_reduction(node: Node, base_price: Decimal, depth: int = 1,
                  max_depth: int = DEFAULT_MAX_DEPTH, quantum: Decimal = DEFAULT_QUANTUM) -> Decimal:
    """Largest reduction reachable through ``node`` and its sub-chains."""
    if depth > max_depth:
        raise TreeDepthExceededError(max_depth, node.id)

    best = ZERO
    for branch in node.branches:
        candidate = amount(branch.reduction, base_price, quantum)
        for child in branch.children:
            candidate += max_reduction(child, base_price, depth + 1, max_depth, quantum)
        best = max(best, candidate)
    return best


def bounds(source: Any, base_price: Decimal, max_depth: int = DEFAULT_MAX_DEPTH,
           quantum: Decimal = DEFAULT_QUANTUM) -> PriceBounds:
    """Price range of a tree, a document, or a top-level node sequence."""
    base_price = to_decimal(base_price)
    total = sum(
        (max_reduction(node, base_price, 1, max_depth, quantum) for node in top_level_nodes(source)),
        ZERO
    )
    return PriceBounds(min=max(ZERO, base_price - total), max=base_price)


def display_price(price_bounds: PriceBounds, display_mode: DisplayMode) -> Decimal:
    """Price advertised for ``display_mode``."""
    return price_bounds.display_price(display_mode)
