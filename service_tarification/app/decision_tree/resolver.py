"""
Branch resolution: pick the single applicable branch of a node.
"""

from typing import List, Tuple

from .conditions import describe, matches, subject_value
from .errors import NoMatchingBranchError
from .models import Branch, BranchTest, EvaluationContext, Node


def resolve(node: Node, context: EvaluationContext) -> Branch:
    """Return the first branch of ``node`` whose condition matches ``context``.

    Raises NoMatchingBranchError when the node's branches do not cover the
    context. That is an authoring defect: no fallback branch is guessed.
    """
    for branch in node.branches:
        if matches(branch.condition, context):
            return branch
    raise NoMatchingBranchError(node.id, node.type.value)


def resolve_with_trace(node: Node, context: EvaluationContext) -> Tuple[Branch, List[BranchTest]]:
    """Resolve ``node`` and report every branch tested on the way."""
    tested: List[BranchTest] = []

    for branch in node.branches:
        matched = matches(branch.condition, context)
        name, value = subject_value(branch.condition, context)
        tested.append(BranchTest(
            branch_id=branch.id,
            branch_code=branch.code,
            matched=matched,
            detail=f"{name}={value}, condition: {describe(branch.condition)} => {'OK' if matched else 'NO'}"
        ))
        if matched:
            return branch, tested

    raise NoMatchingBranchError(
        node.id,
        node.type.value,
        {"tested": [test.branch_code for test in tested]}
    )
