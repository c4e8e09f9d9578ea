"""
Authoring operations on tree documents.

Every operation takes a document and returns a new, validated document.
Apply them through ``DecisionTree.edit`` so a locked tree cannot change.
"""

import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from .errors import MalformedTreeError
from .models import Branch, DefaultCondition, Node, NodeType, Reduction, TreeDocument

NodeEdit = Callable[[Node], Optional[Node]]

DIRECTIONS = ("up", "down")


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def default_branch() -> Branch:
    return Branch(id=new_id(), code="DEFAULT", label="Default", condition=DefaultCondition())


def add_node(document: TreeDocument, node_type: NodeType, node_id: Optional[str] = None) -> TreeDocument:
    """Append a top-level node holding a single default branch."""
    node_type = NodeType(node_type)
    if any(node.type == node_type for node in document.nodes):
        raise MalformedTreeError(
            f"The tree already has a top-level {node_type.value} node",
            {"node_type": node_type.value}
        )

    order = max((node.order for node in document.nodes), default=0) + 1
    node = Node(id=node_id or new_id(), type=node_type, order=order, branches=(default_branch(),))
    return _with_nodes(document, document.nodes + (node,))


def remove_node(document: TreeDocument, node_id: str) -> TreeDocument:
    """Remove a node, wherever it sits, with its whole subtree."""
    return _edit_node(document, node_id, lambda node: None)


def move_node(document: TreeDocument, node_id: str, direction: str) -> TreeDocument:
    """Swap a top-level node with its neighbour and renumber the chain 1..n."""
    if direction not in DIRECTIONS:
        raise MalformedTreeError(f"Unknown direction '{direction}'", {"direction": direction})

    nodes = document.ordered_nodes()
    positions = [index for index, node in enumerate(nodes) if node.id == node_id]
    if not positions:
        raise MalformedTreeError(f"Unknown top-level node '{node_id}'", {"node_id": node_id})

    index = positions[0]
    target = index - 1 if direction == "up" else index + 1
    if 0 <= target < len(nodes):
        nodes[index], nodes[target] = nodes[target], nodes[index]

    renumbered = tuple(node.model_copy(update={"order": position}) for position, node in enumerate(nodes, 1))
    return _with_nodes(document, renumbered)


def add_branch(document: TreeDocument, node_id: str, code: str, condition: Any,
               label: str = "", reduction: Optional[Reduction] = None,
               branch_id: Optional[str] = None) -> TreeDocument:
    """Add a branch to a node.

    The branch goes last, or just before a trailing catch-all branch so the
    catch-all keeps covering what the other branches miss.
    """
    def edit(node: Node) -> Node:
        branch = _build(Branch, id=branch_id or new_id(), code=code, label=label,
                        condition=condition, reduction=reduction)
        branches = list(node.branches)
        position = len(branches) - 1 if branches and branches[-1].is_catchall() else len(branches)
        branches.insert(position, branch)
        return _build(Node, **_fields(node, branches=tuple(branches)))

    return _edit_node(document, node_id, edit)


def update_branch(document: TreeDocument, node_id: str, branch_id: str, **changes) -> TreeDocument:
    """Change the code, label, condition or reduction of a branch."""
    allowed = {"code", "label", "condition", "reduction"}
    unknown = set(changes) - allowed
    if unknown:
        raise MalformedTreeError(f"Cannot update branch fields {sorted(unknown)}")

    return _edit_branch(document, node_id, branch_id, lambda branch: _build(Branch, **_fields(branch, **changes)))


def remove_branch(document: TreeDocument, node_id: str, branch_id: str) -> TreeDocument:
    """Remove a branch and its sub-chain. A node keeps at least one branch."""
    def edit(node: Node) -> Node:
        _require_branch(node, branch_id)
        branches = tuple(branch for branch in node.branches if branch.id != branch_id)
        if not branches:
            raise MalformedTreeError(f"Node '{node.id}' must keep at least one branch", {"node_id": node.id})
        return _build(Node, **_fields(node, branches=branches))

    return _edit_node(document, node_id, edit)


def add_child_node(document: TreeDocument, node_id: str, branch_id: str, node_type: NodeType,
                   child_id: Optional[str] = None) -> TreeDocument:
    """Attach a sub-condition node under a branch."""
    node_type = NodeType(node_type)

    def edit(node: Node) -> Node:
        if node.type == node_type:
            raise MalformedTreeError(
                f"A {node_type.value} node cannot nest under a {node.type.value} node",
                {"node_id": node.id, "node_type": node_type.value}
            )
        branch = _require_branch(node, branch_id)
        child = Node(
            id=child_id or new_id(),
            type=node_type,
            order=len(branch.children) + 1,
            branches=(default_branch(),),
        )
        updated = _build(Branch, **_fields(branch, children=branch.children + (child,)))
        return _build(Node, **_fields(node, branches=_swap_branch(node, updated)))

    return _edit_node(document, node_id, edit)


def set_reduction(document: TreeDocument, node_id: str, branch_id: str,
                  reduction: Optional[Reduction]) -> TreeDocument:
    """Set or clear the reduction carried by a branch."""
    return update_branch(document, node_id, branch_id, reduction=reduction)


def _edit_branch(document: TreeDocument, node_id: str, branch_id: str,
                 edit: Callable[[Branch], Branch]) -> TreeDocument:
    def edit_node(node: Node) -> Node:
        updated = edit(_require_branch(node, branch_id))
        return _build(Node, **_fields(node, branches=_swap_branch(node, updated)))

    return _edit_node(document, node_id, edit_node)


def _edit_node(document: TreeDocument, node_id: str, edit: NodeEdit) -> TreeDocument:
    nodes, found = _rewrite(document.nodes, node_id, edit)
    if not found:
        raise MalformedTreeError(f"Unknown node '{node_id}'", {"node_id": node_id})
    return _with_nodes(document, nodes)


def _rewrite(nodes: Tuple[Node, ...], node_id: str, edit: NodeEdit) -> Tuple[Tuple[Node, ...], bool]:
    result = []
    found = False
    for node in nodes:
        if not found and node.id == node_id:
            found = True
            replacement = edit(node)
            if replacement is not None:
                result.append(replacement)
            continue

        if not found:
            branches = []
            for branch in node.branches:
                children, found_below = (branch.children, False) if found else _rewrite(branch.children, node_id, edit)
                if found_below:
                    found = True
                    branch = branch.model_copy(update={"children": children})
                branches.append(branch)
            if found:
                node = node.model_copy(update={"branches": tuple(branches)})
        result.append(node)
    return tuple(result), found


def _require_branch(node: Node, branch_id: str) -> Branch:
    branch = node.find_branch(branch_id)
    if branch is None:
        raise MalformedTreeError(
            f"Unknown branch '{branch_id}' on node '{node.id}'",
            {"node_id": node.id, "branch_id": branch_id}
        )
    return branch


def _swap_branch(node: Node, updated: Branch) -> Tuple[Branch, ...]:
    return tuple(updated if branch.id == updated.id else branch for branch in node.branches)


def _fields(model: Any, **changes) -> Dict[str, Any]:
    # Shallow: nested models are passed through as instances
    fields = {name: getattr(model, name) for name in type(model).model_fields}
    fields.update(changes)
    return fields


def _build(model_class, **fields):
    try:
        return model_class(**fields)
    except PydanticValidationError as e:
        raise MalformedTreeError(
            f"Invalid {model_class.__name__.lower()}",
            {"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]}
        )


def _with_nodes(document: TreeDocument, nodes: Tuple[Node, ...]) -> TreeDocument:
    updated = TreeDocument(schema_version=document.schema_version, nodes=nodes)
    seen = set()
    for node, _ in updated.walk():
        for identifier in (("node", node.id),) + tuple(("branch", branch.id) for branch in node.branches):
            if identifier in seen:
                raise MalformedTreeError(f"Duplicate {identifier[0]} id '{identifier[1]}'")
            seen.add(identifier)
    return updated
