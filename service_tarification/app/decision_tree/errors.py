"""
Decision tree error taxonomy.

Every error here is a logic error: none is transient and none is retried.
"""

from typing import Any, Dict, Optional

from shared.errors import ConflictError, NotFoundError, TarificationException, ValidationError


class MalformedTreeError(ValidationError):
    """A condition does not fit its node type, or a required field is missing."""

    def __init__(self, message: str = "Malformed decision tree", details: Optional[Dict[str, Any]] = None,
                 code: str = "MALFORMED_TREE"):
        super().__init__(message, details, code)


class TreeDepthExceededError(MalformedTreeError):
    """Branch children nest deeper than the configured limit."""

    def __init__(self, max_depth: int, node_id: Optional[str] = None):
        super().__init__(
            f"Decision tree nests deeper than {max_depth} levels",
            {"max_depth": max_depth, "node_id": node_id},
            code="TREE_TOO_DEEP"
        )
        self.max_depth = max_depth


class NoMatchingBranchError(TarificationException):
    """No branch of a node covers the evaluated context (authoring defect)."""

    def __init__(self, node_id: str, node_type: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "NO_MATCHING_BRANCH",
            f"No branch of node '{node_id}' ({node_type}) matches the subject",
            {"node_id": node_id, "node_type": node_type, **(details or {})}
        )
        self.node_id = node_id
        self.node_type = node_type


class TreeLockedError(ConflictError):
    """Mutation attempted on a locked tree. Duplicate it, then edit the copy."""

    def __init__(self, tree_id: str):
        super().__init__(
            f"Decision tree '{tree_id}' is locked and can no longer be modified",
            {"tree_id": tree_id},
            code="TREE_LOCKED"
        )
        self.tree_id = tree_id


class InvalidTransitionError(ConflictError):
    """Lifecycle transition not allowed from the tree's current state."""

    def __init__(self, tree_id: str, transition: str, reason: str):
        super().__init__(
            f"Cannot {transition} decision tree '{tree_id}': {reason}",
            {"tree_id": tree_id, "transition": transition},
            code="INVALID_TRANSITION"
        )


class TreeAlreadyExistsError(ConflictError):
    """The tariff already owns an active tree."""

    def __init__(self, tariff_id: str):
        super().__init__(
            f"A decision tree already exists for tariff '{tariff_id}'",
            {"tariff_id": tariff_id},
            code="TREE_ALREADY_EXISTS"
        )


class TreeNotFoundError(NotFoundError):
    """Unknown tree, or a tariff without a tree."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="TREE_NOT_FOUND")
