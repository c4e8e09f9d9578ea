"""
Decision tree data models for the Tarification Service.

Tree documents (nodes, branches, conditions, reductions) are frozen pydantic
models so a validated document can be shared between readers without
copying. Evaluation inputs and outputs are plain dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

CURRENT_SCHEMA_VERSION = 1


def _as_identifier(value: Any) -> Any:
    # Ids arrive as ints from older documents and as strings from new ones
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


Identifier = Annotated[str, BeforeValidator(_as_identifier)]


class NodeType(str, Enum):
    """Evaluation criteria a node can test."""
    COMMUNE = "COMMUNE"
    AGE = "AGE"
    QF = "QF"
    FIDELITE = "FIDELITE"
    MULTI_INSCRIPTIONS = "MULTI_INSCRIPTIONS"
    STATUT_SOCIAL = "STATUT_SOCIAL"

    @property
    def condition_kind(self) -> str:
        """Condition tag accepted under this node type (besides ``default``)."""
        return self.value.lower()


class DisplayMode(str, Enum):
    """Which end of the price range is advertised before evaluation."""
    MINIMUM = "minimum"
    MAXIMUM = "maximum"


class ReductionKind(str, Enum):
    """Reduction computation types."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class ComparisonOperator(str, Enum):
    """Numeric comparison operators."""
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    EQ = "eq"
    BETWEEN = "between"
    IS_NULL = "is_null"


class CommuneScope(str, Enum):
    """How a commune condition selects residences."""
    COMMUNITY = "community"
    EXPLICIT_LIST = "explicit_list"
    CATCHALL = "catchall"


AGE_OPERATORS = frozenset({
    ComparisonOperator.LT, ComparisonOperator.LTE, ComparisonOperator.GT,
    ComparisonOperator.GTE, ComparisonOperator.EQ, ComparisonOperator.BETWEEN,
})
QF_OPERATORS = frozenset({
    ComparisonOperator.LT, ComparisonOperator.LTE, ComparisonOperator.GT,
    ComparisonOperator.GTE, ComparisonOperator.BETWEEN, ComparisonOperator.IS_NULL,
})
THRESHOLD_OPERATORS = frozenset({
    ComparisonOperator.GTE, ComparisonOperator.GT, ComparisonOperator.EQ,
})


def operand_problem(kind: str, op: Any, allowed: FrozenSet[ComparisonOperator],
                    value: Any, minimum: Any, maximum: Any) -> Optional[str]:
    """Describe what is wrong with a comparison's operands, or None if usable."""
    if op not in allowed:
        return f"{kind} condition does not support operator '{getattr(op, 'value', op)}'"
    if op == ComparisonOperator.IS_NULL:
        return None
    if op == ComparisonOperator.BETWEEN:
        if minimum is None or maximum is None:
            return f"{kind} condition with operator 'between' requires 'min' and 'max'"
        if minimum > maximum:
            return f"{kind} condition has 'min' greater than 'max'"
        return None
    if value is None:
        return f"{kind} condition with operator '{op.value}' requires 'value'"
    return None


class TreeModel(BaseModel):
    """Base for every tree document model."""
    model_config = ConfigDict(frozen=True, extra="forbid")


class CommuneCondition(TreeModel):
    """Residence test: a community of communes, an explicit list, or anyone."""
    kind: Literal["commune"] = "commune"
    scope: CommuneScope
    ids: Tuple[Identifier, ...] = ()

    @model_validator(mode="after")
    def _check_ids(self) -> "CommuneCondition":
        if self.scope != CommuneScope.CATCHALL and not self.ids:
            raise ValueError(f"commune condition with scope '{self.scope.value}' requires 'ids'")
        return self


class AgeCondition(TreeModel):
    kind: Literal["age"] = "age"
    op: ComparisonOperator
    value: Optional[int] = None
    min: Optional[int] = None
    max: Optional[int] = None

    @model_validator(mode="after")
    def _check_operands(self) -> "AgeCondition":
        problem = operand_problem("age", self.op, AGE_OPERATORS, self.value, self.min, self.max)
        if problem:
            raise ValueError(problem)
        return self


class QfCondition(TreeModel):
    """Means-tested index (quotient familial) test."""
    kind: Literal["qf"] = "qf"
    op: ComparisonOperator
    value: Optional[Decimal] = None
    min: Optional[Decimal] = None
    max: Optional[Decimal] = None

    @model_validator(mode="after")
    def _check_operands(self) -> "QfCondition":
        problem = operand_problem("qf", self.op, QF_OPERATORS, self.value, self.min, self.max)
        if problem:
            raise ValueError(problem)
        return self


class FideliteCondition(TreeModel):
    """Membership years test."""
    kind: Literal["fidelite"] = "fidelite"
    op: ComparisonOperator
    years: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_operator(self) -> "FideliteCondition":
        problem = operand_problem("fidelite", self.op, THRESHOLD_OPERATORS, self.years, None, None)
        if problem:
            raise ValueError(problem)
        return self


class MultiInscriptionsCondition(TreeModel):
    """Household registrant count test."""
    kind: Literal["multi_inscriptions"] = "multi_inscriptions"
    op: ComparisonOperator
    count: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_operator(self) -> "MultiInscriptionsCondition":
        problem = operand_problem("multi_inscriptions", self.op, THRESHOLD_OPERATORS, self.count, None, None)
        if problem:
            raise ValueError(problem)
        return self


class StatutSocialCondition(TreeModel):
    kind: Literal["statut_social"] = "statut_social"
    statuses: Tuple[str, ...] = Field(min_length=1)
    inverse: bool = False


class DefaultCondition(TreeModel):
    """Catch-all condition, valid under every node type."""
    kind: Literal["default"] = "default"


Condition = Annotated[
    Union[
        CommuneCondition,
        AgeCondition,
        QfCondition,
        FideliteCondition,
        MultiInscriptionsCondition,
        StatutSocialCondition,
        DefaultCondition,
    ],
    Field(discriminator="kind"),
]


class Reduction(TreeModel):
    """Discount carried by a branch."""
    kind: ReductionKind
    amount: Decimal = Field(ge=0)
    operation_ref: Optional[str] = None

    @model_validator(mode="after")
    def _check_percentage(self) -> "Reduction":
        if self.kind == ReductionKind.PERCENTAGE and self.amount > 100:
            raise ValueError("percentage reduction cannot exceed 100")
        return self


class Branch(TreeModel):
    """One outcome of a node, with an optional reduction and a private sub-chain."""
    id: Identifier
    code: str = Field(min_length=1)
    label: str = ""
    condition: Condition
    reduction: Optional[Reduction] = None
    children: Tuple["Node", ...] = ()

    def is_catchall(self) -> bool:
        condition = self.condition
        if isinstance(condition, DefaultCondition):
            return True
        return isinstance(condition, CommuneCondition) and condition.scope == CommuneScope.CATCHALL


class Node(TreeModel):
    """One evaluation criterion."""
    id: Identifier
    type: NodeType
    order: int = 0
    branches: Tuple[Branch, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_condition_kinds(self) -> "Node":
        accepted = (self.type.condition_kind, "default")
        for branch in self.branches:
            if branch.condition.kind not in accepted:
                raise ValueError(
                    f"branch '{branch.id}' has a '{branch.condition.kind}' condition "
                    f"under a {self.type.value} node"
                )
        return self

    def has_catchall(self) -> bool:
        return any(branch.is_catchall() for branch in self.branches)

    def find_branch(self, branch_id: str) -> Optional[Branch]:
        for branch in self.branches:
            if branch.id == branch_id:
                return branch
        return None


Branch.model_rebuild()


class TreeDocument(TreeModel):
    """Serialized form of a decision tree: the ordered top-level chain."""
    schema_version: int = CURRENT_SCHEMA_VERSION
    nodes: Tuple[Node, ...] = ()

    def ordered_nodes(self) -> List[Node]:
        """Top-level nodes by ``order``; ties keep their declared position."""
        return sorted(self.nodes, key=lambda node: node.order)

    def walk(self) -> Iterator[Tuple[Node, int]]:
        """Yield every node with its nesting depth (top level is 1)."""
        stack = [(node, 1) for node in reversed(self.nodes)]
        while stack:
            node, depth = stack.pop()
            yield node, depth
            for branch in reversed(node.branches):
                stack.extend((child, depth + 1) for child in reversed(branch.children))


class Tariff(TreeModel):
    """Membership fee before any discretionary discount."""
    id: Identifier
    label: str = ""
    base_price: Decimal = Field(ge=0)
    structure_id: Optional[Identifier] = None


@dataclass(frozen=True)
class EvaluationContext:
    """Subject attributes, resolved and supplied by the caller."""
    age: Optional[int] = None
    quotient_familial: Optional[Decimal] = None
    residence_id: Optional[str] = None
    community_ids: FrozenSet[str] = frozenset()
    social_status: Optional[str] = None
    membership_years: int = 0
    household_registrants: int = 0

    def __post_init__(self):
        # Tree documents hold ids as strings and indexes as decimals
        if self.residence_id is not None:
            object.__setattr__(self, "residence_id", str(self.residence_id))
        object.__setattr__(self, "community_ids", frozenset(str(c) for c in self.community_ids))
        if self.quotient_familial is not None and not isinstance(self.quotient_familial, Decimal):
            object.__setattr__(self, "quotient_familial", Decimal(str(self.quotient_familial)))


@dataclass(frozen=True)
class TrailStep:
    """One resolved node on the evaluation path."""
    node_id: str
    node_type: NodeType
    branch_id: str
    branch_code: str
    branch_label: str
    reduction_applied: Decimal
    reduction_kind: Optional[ReductionKind] = None
    reduction_amount: Optional[Decimal] = None
    operation_ref: Optional[str] = None
    depth: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type.value,
            "branch_id": self.branch_id,
            "branch_code": self.branch_code,
            "branch_label": self.branch_label,
            "reduction_applied": str(self.reduction_applied),
            "reduction_kind": self.reduction_kind.value if self.reduction_kind else None,
            "reduction_amount": str(self.reduction_amount) if self.reduction_amount is not None else None,
            "operation_ref": self.operation_ref,
            "depth": self.depth,
        }


@dataclass(frozen=True)
class BranchTest:
    """Outcome of testing one branch condition."""
    branch_id: str
    branch_code: str
    matched: bool
    detail: str


@dataclass(frozen=True)
class NodeTrace:
    """Every branch tested for a node, in order, and the one selected."""
    node_id: str
    node_type: NodeType
    depth: int
    tested: Tuple[BranchTest, ...]
    selected: Optional[str] = None


@dataclass(frozen=True)
class ReductionLine:
    """Reduction record handed to accounting collaborators."""
    sequence: int
    node_type: NodeType
    branch_code: str
    branch_label: str
    kind: ReductionKind
    amount: Decimal
    applied: Decimal
    operation_ref: Optional[str] = None


@dataclass(frozen=True)
class EvaluationResult:
    """Result of a decision tree evaluation."""
    base_price: Decimal
    final_price: Decimal
    total_reduction: Decimal
    trail: Tuple[TrailStep, ...] = ()
    trace: Tuple[NodeTrace, ...] = ()

    @property
    def path(self) -> List[str]:
        """Branch codes in the order they were taken."""
        return [step.branch_code for step in self.trail]

    def reduction_lines(self) -> List[ReductionLine]:
        lines: List[ReductionLine] = []
        for step in self.trail:
            if step.reduction_kind is None:
                continue
            lines.append(ReductionLine(
                sequence=len(lines) + 1,
                node_type=step.node_type,
                branch_code=step.branch_code,
                branch_label=step.branch_label,
                kind=step.reduction_kind,
                amount=step.reduction_amount,
                applied=step.reduction_applied,
                operation_ref=step.operation_ref,
            ))
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_price": str(self.base_price),
            "final_price": str(self.final_price),
            "total_reduction": str(self.total_reduction),
            "trail": [step.to_dict() for step in self.trail],
        }


@dataclass(frozen=True)
class PriceBounds:
    """Advertised price range of a tariff before a subject is evaluated."""
    min: Decimal
    max: Decimal

    def display_price(self, mode: DisplayMode) -> Decimal:
        return self.min if DisplayMode(mode) == DisplayMode.MINIMUM else self.max


@dataclass(frozen=True)
class TreeStatus:
    """Lock status of a tree."""
    id: str
    locked: bool
    locked_at: Optional[datetime]
    version: int

    @property
    def editable(self) -> bool:
        return not self.locked


@dataclass(frozen=True)
class ConditionTypeInfo:
    """Catalog entry describing a node type to tree authors."""
    code: NodeType
    label: str
    description: str
    display_order: int
    operators: Tuple[str, ...] = ()
