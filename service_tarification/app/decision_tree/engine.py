"""
Chain walker for the Tarification Service.

A tree is walked as a single work queue: the top-level nodes in ``order``,
with the children of every selected branch inserted at the front of the
queue so that a branch's sub-chain runs before the outer chain resumes.
"""

import time
from collections import deque
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from shared.config import get_config
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .errors import MalformedTreeError, NoMatchingBranchError, TreeDepthExceededError
from .models import (
    EvaluationContext, EvaluationResult, Node, NodeTrace, TrailStep, TreeDocument,
)
from .reductions import DEFAULT_QUANTUM, accumulate, amount, final_price, to_decimal
from .resolver import resolve_with_trace

DEFAULT_MAX_DEPTH = 32


def top_level_nodes(source: Any) -> List[Node]:
    """Ordered top-level chain of a tree, a document, or a node sequence."""
    document = getattr(source, "document", source)
    if isinstance(document, TreeDocument):
        return document.ordered_nodes()
    return sorted(document, key=lambda node: node.order)


def evaluate(nodes: Iterable[Node], base_price: Decimal, context: EvaluationContext,
             max_depth: int = DEFAULT_MAX_DEPTH, quantum: Decimal = DEFAULT_QUANTUM) -> EvaluationResult:
    """Walk ``nodes`` for ``context`` and price the tariff.

    ``nodes`` is taken in the given order; use ``top_level_nodes`` to sort a
    document's chain. The final price is floored at zero while the total
    reduction is reported as accumulated.
    """
    base_price = to_decimal(base_price)
    queue = deque((node, 1) for node in nodes)
    trail: List[TrailStep] = []
    trace: List[NodeTrace] = []
    deltas: List[Decimal] = []

    while queue:
        node, depth = queue.popleft()
        if depth > max_depth:
            raise TreeDepthExceededError(max_depth, node.id)

        branch, tested = resolve_with_trace(node, context)
        delta = amount(branch.reduction, base_price, quantum)
        deltas.append(delta)

        reduction = branch.reduction
        trail.append(TrailStep(
            node_id=node.id,
            node_type=node.type,
            branch_id=branch.id,
            branch_code=branch.code,
            branch_label=branch.label,
            reduction_applied=delta,
            reduction_kind=reduction.kind if reduction else None,
            reduction_amount=reduction.amount if reduction else None,
            operation_ref=reduction.operation_ref if reduction else None,
            depth=depth,
        ))
        trace.append(NodeTrace(
            node_id=node.id,
            node_type=node.type,
            depth=depth,
            tested=tuple(tested),
            selected=branch.id,
        ))

        # Sub-chain runs before the rest of the outer chain
        queue.extendleft((child, depth + 1) for child in reversed(branch.children))

    total = accumulate(deltas)
    return EvaluationResult(
        base_price=base_price,
        final_price=final_price(base_price, total),
        total_reduction=total,
        trail=tuple(trail),
        trace=tuple(trace),
    )


class DecisionTreeEngine:
    """Evaluates decision trees with logging and metrics."""

    def __init__(self, max_depth: Optional[int] = None, quantum: Optional[Decimal] = None,
                 metrics: Optional[MetricsCollector] = None):
        config = get_config()
        self.max_depth = max_depth if max_depth is not None else config.max_tree_depth
        self.quantum = quantum if quantum is not None else config.money_quantum
        self.metrics = metrics or get_metrics_collector("tarification")
        self.logger = get_logger("tarification.engine")

    def evaluate(self, nodes: Iterable[Node], base_price: Decimal,
                 context: EvaluationContext) -> EvaluationResult:
        """Evaluate an ordered node chain."""
        start_time = time.time()

        try:
            with self.metrics.time_operation("tariff_evaluation_duration_seconds"):
                result = evaluate(nodes, base_price, context, self.max_depth, self.quantum)
        except NoMatchingBranchError as e:
            self.metrics.increment_counter("tariff_evaluations_total", outcome="no_match")
            self.metrics.record_error("no_matching_branch")
            self.logger.warning(
                "No branch matched during evaluation",
                node_id=e.node_id,
                node_type=e.node_type,
            )
            raise
        except MalformedTreeError as e:
            self.metrics.increment_counter("tariff_evaluations_total", outcome="malformed")
            self.metrics.record_error(e.code.lower())
            self.logger.error("Malformed decision tree", error=e.message, details=e.details)
            raise
        except Exception as e:
            self.metrics.increment_counter("tariff_evaluations_total", outcome="error")
            self.metrics.record_error(type(e).__name__)
            self.logger.error("Decision tree evaluation error", error=str(e))
            raise

        self.metrics.increment_counter("tariff_evaluations_total", outcome="success")
        self.logger.debug(
            "Decision tree evaluated",
            base_price=str(result.base_price),
            final_price=str(result.final_price),
            path=result.path,
            evaluation_time_ms=(time.time() - start_time) * 1000,
        )
        return result

    def evaluate_tree(self, tree: Any, base_price: Decimal,
                      context: EvaluationContext) -> EvaluationResult:
        """Evaluate a decision tree (or bare document) for ``context``."""
        return self.evaluate(top_level_nodes(tree), base_price, context)


def evaluate_tree(tree: Any, base_price: Decimal, context: EvaluationContext) -> EvaluationResult:
    """Evaluate a decision tree with the default engine settings."""
    config = get_config()
    return evaluate(top_level_nodes(tree), base_price, context,
                    config.max_tree_depth, config.money_quantum)
