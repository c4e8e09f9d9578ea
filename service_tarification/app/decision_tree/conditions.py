"""
Condition evaluation.

``matches`` tests one subject attribute against one typed condition. It is
pure and raises ``MalformedTreeError`` instead of guessing when a condition
lacks the fields its operator needs.
"""

from decimal import Decimal
from typing import Any, Optional, Tuple

from .errors import MalformedTreeError
from .models import (
    AGE_OPERATORS, QF_OPERATORS, THRESHOLD_OPERATORS,
    AgeCondition, CommuneCondition, CommuneScope, ComparisonOperator, DefaultCondition,
    EvaluationContext, FideliteCondition, MultiInscriptionsCondition, QfCondition,
    StatutSocialCondition, operand_problem,
)


def matches(condition: Any, context: EvaluationContext) -> bool:
    """Return True when ``context`` satisfies ``condition``."""
    if isinstance(condition, DefaultCondition):
        return True

    if isinstance(condition, CommuneCondition):
        return _match_commune(condition, context)

    if isinstance(condition, AgeCondition):
        return _match_range("age", condition, AGE_OPERATORS, context.age)

    if isinstance(condition, QfCondition):
        return _match_range("qf", condition, QF_OPERATORS, context.quotient_familial)

    if isinstance(condition, FideliteCondition):
        return _match_threshold("fidelite", condition.op, condition.years, context.membership_years)

    if isinstance(condition, MultiInscriptionsCondition):
        return _match_threshold(
            "multi_inscriptions", condition.op, condition.count, context.household_registrants
        )

    if isinstance(condition, StatutSocialCondition):
        if condition.statuses is None:
            raise MalformedTreeError("statut_social condition requires 'statuses'")
        member = context.social_status is not None and context.social_status in condition.statuses
        return not member if condition.inverse else member

    raise MalformedTreeError(
        f"Unsupported condition type {type(condition).__name__}",
        {"condition": repr(condition)}
    )


def _match_commune(condition: CommuneCondition, context: EvaluationContext) -> bool:
    if condition.scope == CommuneScope.CATCHALL:
        return True
    if not condition.ids:
        raise MalformedTreeError(f"commune condition with scope '{condition.scope.value}' requires 'ids'")
    if context.residence_id is None:
        return False

    if condition.scope == CommuneScope.EXPLICIT_LIST:
        return context.residence_id in condition.ids

    if condition.scope == CommuneScope.COMMUNITY:
        return any(community_id in condition.ids for community_id in context.community_ids)

    raise MalformedTreeError(f"Unknown commune scope '{condition.scope}'")


def _match_range(kind: str, condition: Any, allowed, subject_value: Optional[Any]) -> bool:
    op = condition.op
    problem = operand_problem(kind, op, allowed, condition.value, condition.min, condition.max)
    if problem:
        raise MalformedTreeError(problem)

    if op == ComparisonOperator.IS_NULL:
        return subject_value is None
    if subject_value is None:
        return False

    return _compare(op, Decimal(subject_value), condition.value, condition.min, condition.max)


def _match_threshold(kind: str, op: ComparisonOperator, threshold: Optional[int], subject_value: int) -> bool:
    problem = operand_problem(kind, op, THRESHOLD_OPERATORS, threshold, None, None)
    if problem:
        raise MalformedTreeError(problem)
    return _compare(op, Decimal(subject_value), threshold, None, None)


def _compare(op: ComparisonOperator, subject: Decimal, value: Any, minimum: Any, maximum: Any) -> bool:
    if op == ComparisonOperator.LT:
        return subject < value
    elif op == ComparisonOperator.LTE:
        return subject <= value
    elif op == ComparisonOperator.GT:
        return subject > value
    elif op == ComparisonOperator.GTE:
        return subject >= value
    elif op == ComparisonOperator.EQ:
        return subject == value
    elif op == ComparisonOperator.BETWEEN:
        return minimum <= subject <= maximum
    raise MalformedTreeError(f"Unknown comparison operator '{op}'")


_SYMBOLS = {
    ComparisonOperator.LT: "<",
    ComparisonOperator.LTE: "<=",
    ComparisonOperator.GT: ">",
    ComparisonOperator.GTE: ">=",
    ComparisonOperator.EQ: "=",
}


def _describe_comparison(name: str, op: ComparisonOperator, value: Any,
                         minimum: Any = None, maximum: Any = None) -> str:
    if op == ComparisonOperator.BETWEEN:
        return f"{minimum} <= {name} <= {maximum}"
    if op == ComparisonOperator.IS_NULL:
        return f"{name} is not known"
    return f"{name} {_SYMBOLS.get(op, op.value)} {value}"


def describe(condition: Any) -> str:
    """Human-readable form of a condition, for evaluation traces."""
    if isinstance(condition, DefaultCondition):
        return "default branch"
    if isinstance(condition, CommuneCondition):
        if condition.scope == CommuneScope.CATCHALL:
            return "any commune"
        if condition.scope == CommuneScope.COMMUNITY:
            return f"residence in community [{', '.join(condition.ids)}]"
        return f"residence in [{', '.join(condition.ids)}]"
    if isinstance(condition, AgeCondition):
        return _describe_comparison("age", condition.op, condition.value, condition.min, condition.max)
    if isinstance(condition, QfCondition):
        return _describe_comparison("QF", condition.op, condition.value, condition.min, condition.max)
    if isinstance(condition, FideliteCondition):
        return _describe_comparison("membership years", condition.op, condition.years)
    if isinstance(condition, MultiInscriptionsCondition):
        return _describe_comparison("household registrants", condition.op, condition.count)
    if isinstance(condition, StatutSocialCondition):
        verb = "not in" if condition.inverse else "in"
        return f"social status {verb} [{', '.join(condition.statuses)}]"
    return repr(condition)


def subject_value(condition: Any, context: EvaluationContext) -> Tuple[str, Any]:
    """Name and value of the subject attribute a condition reads."""
    if isinstance(condition, CommuneCondition):
        if condition.scope == CommuneScope.COMMUNITY:
            return "communities", sorted(context.community_ids)
        return "residence", context.residence_id
    if isinstance(condition, AgeCondition):
        return "age", context.age
    if isinstance(condition, QfCondition):
        return "QF", context.quotient_familial
    if isinstance(condition, FideliteCondition):
        return "membership years", context.membership_years
    if isinstance(condition, MultiInscriptionsCondition):
        return "household registrants", context.household_registrants
    if isinstance(condition, StatutSocialCondition):
        return "social status", context.social_status
    return "subject", None
