"""
Loading, validation and serialization of tree documents.

Documents are stored as JSON. ``load_document`` upgrades older layouts to
the current schema, validates the result, and raises ``MalformedTreeError``
for anything it cannot accept. ``dump_document`` is its exact inverse.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from shared.config import get_config
from shared.logging import get_logger
from .errors import MalformedTreeError, TreeDepthExceededError
from .models import CURRENT_SCHEMA_VERSION, NodeType, TreeDocument

logger = get_logger("tarification.documents")

LEGACY_SCHEMA_VERSION = 0


def load_document(data: Union[str, bytes, Dict[str, Any]], max_depth: Optional[int] = None) -> TreeDocument:
    """Parse, upgrade and validate a tree document."""
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedTreeError("Tree document is not valid JSON", {"error": str(e)})

    if not isinstance(data, dict):
        raise MalformedTreeError("Tree document must be a JSON object")

    data = upgrade_document(data)

    try:
        document = TreeDocument.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedTreeError(
            "Tree document failed validation",
            {"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]}
        )

    check_document(document, max_depth)
    return document


def check_document(document: TreeDocument, max_depth: Optional[int] = None) -> None:
    """Structural checks the models cannot make on their own."""
    if max_depth is None:
        max_depth = get_config().max_tree_depth

    node_ids = set()
    branch_ids = set()
    for node, depth in document.walk():
        if depth > max_depth:
            raise TreeDepthExceededError(max_depth, node.id)
        if node.id in node_ids:
            raise MalformedTreeError(f"Duplicate node id '{node.id}'", {"node_id": node.id})
        node_ids.add(node.id)

        for branch in node.branches:
            if branch.id in branch_ids:
                raise MalformedTreeError(f"Duplicate branch id '{branch.id}'", {"branch_id": branch.id})
            branch_ids.add(branch.id)

        if not node.has_catchall():
            logger.warning(
                "Node has no catch-all branch",
                node_id=node.id,
                node_type=node.type.value,
            )


def dump_document(document: TreeDocument) -> Dict[str, Any]:
    """JSON-safe mapping of a document."""
    return document.model_dump(mode="json")


def dumps_document(document: TreeDocument) -> str:
    """JSON text of a document."""
    return json.dumps(dump_document(document), ensure_ascii=False)


def schema_version_of(data: Dict[str, Any]) -> int:
    """Schema version of a raw document mapping."""
    if "schema_version" in data:
        version = data["schema_version"]
        if not isinstance(version, int) or isinstance(version, bool):
            raise MalformedTreeError("'schema_version' must be an integer", {"schema_version": version})
        return version
    if "noeuds" in data:
        return LEGACY_SCHEMA_VERSION
    return CURRENT_SCHEMA_VERSION


def upgrade_document(data: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a raw document mapping up to the current schema version."""
    version = schema_version_of(data)
    if version > CURRENT_SCHEMA_VERSION:
        raise MalformedTreeError(
            f"Unsupported tree schema version {version}",
            {"schema_version": version, "current": CURRENT_SCHEMA_VERSION}
        )

    while version < CURRENT_SCHEMA_VERSION:
        upgrade = _UPGRADES.get(version)
        if upgrade is None:
            raise MalformedTreeError(f"No upgrade path from schema version {version}")
        data = upgrade(data)
        logger.info("Tree document upgraded", from_version=version, to_version=version + 1)
        version += 1

    return data


# Legacy layout (schema 0)

_LEGACY_OPERATORS = {
    "<": "lt",
    "<=": "lte",
    ">": "gt",
    ">=": "gte",
    "=": "eq",
    "==": "eq",
    "entre": "between",
}

_LEGACY_REDUCTION_KINDS = {
    "fixe": "fixed",
    "pourcentage": "percentage",
}


def _upgrade_v0(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "schema_version": 1,
        "nodes": [_legacy_node(node) for node in data.get("noeuds") or []],
    }


def _legacy_node(node: Dict[str, Any]) -> Dict[str, Any]:
    node_type = node.get("type")
    return {
        "id": node.get("id"),
        "type": node_type,
        "order": node.get("ordre") or 0,
        "branches": [_legacy_branch(node_type, branch) for branch in node.get("branches") or []],
    }


def _legacy_branch(node_type: Optional[str], branch: Dict[str, Any]) -> Dict[str, Any]:
    upgraded = {
        "id": branch.get("id"),
        "code": branch.get("code"),
        "label": branch.get("libelle") or "",
        "condition": _legacy_condition(node_type, branch.get("condition") or {}),
        "children": [_legacy_node(child) for child in branch.get("enfants") or []],
    }

    reduction = branch.get("reduction")
    if reduction:
        kind = reduction.get("type_calcul") or "fixe"
        upgraded["reduction"] = {
            "kind": _LEGACY_REDUCTION_KINDS.get(kind, kind),
            "amount": str(reduction.get("valeur") or 0),
            "operation_ref": _optional_str(reduction.get("operation_id")),
        }
    return upgraded


def _legacy_condition(node_type: Optional[str], condition: Dict[str, Any]) -> Dict[str, Any]:
    if condition.get("type") in ("autre", "default"):
        return {"kind": "default"}

    converter = _LEGACY_CONDITIONS.get(node_type)
    if converter is None:
        raise MalformedTreeError(f"Unknown legacy node type '{node_type}'")
    return converter(condition)


def _legacy_commune(condition: Dict[str, Any]) -> Dict[str, Any]:
    if condition.get("type") == "communaute" and condition.get("id") is not None:
        return {"kind": "commune", "scope": "community", "ids": [str(condition["id"])]}
    if condition.get("type") == "communes" and condition.get("ids"):
        return {"kind": "commune", "scope": "explicit_list", "ids": [str(i) for i in condition["ids"]]}
    if condition.get("commune_id") is not None:
        return {"kind": "commune", "scope": "explicit_list", "ids": [str(condition["commune_id"])]}
    raise MalformedTreeError("Legacy commune condition has no communes", {"condition": condition})


def _legacy_bounds(kind: str, condition: Dict[str, Any], min_key: str, max_key: str) -> Dict[str, Any]:
    minimum = condition.get(min_key, condition.get("min"))
    maximum = condition.get(max_key, condition.get("max"))

    if minimum is not None and maximum is not None:
        return {"kind": kind, "op": "between", "min": minimum, "max": maximum}
    if minimum is not None:
        return {"kind": kind, "op": "gte", "value": minimum}
    if maximum is not None:
        return {"kind": kind, "op": "lte", "value": maximum}
    raise MalformedTreeError(f"Legacy {kind} condition has no bounds", {"condition": condition})


def _legacy_age(condition: Dict[str, Any]) -> Dict[str, Any]:
    operator = condition.get("operateur")
    if operator is None:
        return _legacy_bounds("age", condition, "min", "max")
    if operator not in _LEGACY_OPERATORS:
        raise MalformedTreeError(f"Unknown legacy operator '{operator}'", {"condition": condition})

    op = _LEGACY_OPERATORS[operator]
    if op == "between":
        return {"kind": "age", "op": op, "min": condition.get("min"), "max": condition.get("max")}
    return {"kind": "age", "op": op, "value": condition.get("valeur")}


def _legacy_qf(condition: Dict[str, Any]) -> Dict[str, Any]:
    return _legacy_bounds("qf", condition, "borne_min", "borne_max")


def _legacy_threshold(kind: str, field: str, min_key: str, max_key: str) -> Callable[[Dict[str, Any]], Dict[str, Any]]:
    def convert(condition: Dict[str, Any]) -> Dict[str, Any]:
        minimum = condition.get(min_key, condition.get("min"))
        maximum = condition.get(max_key, condition.get("max"))
        if minimum is None:
            raise MalformedTreeError(f"Legacy {kind} condition has no minimum", {"condition": condition})
        if maximum is not None and maximum != minimum:
            raise MalformedTreeError(
                f"Legacy {kind} condition with an upper bound cannot be upgraded",
                {"condition": condition}
            )
        return {"kind": kind, "op": "eq" if maximum is not None else "gte", field: minimum}
    return convert


def _legacy_statut_social(condition: Dict[str, Any]) -> Dict[str, Any]:
    statuses: List[str] = list(condition.get("statuts") or [])
    if not statuses and condition.get("statut"):
        statuses = [condition["statut"]]
    return {"kind": "statut_social", "statuses": statuses, "inverse": False}


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


_LEGACY_CONDITIONS = {
    NodeType.COMMUNE.value: _legacy_commune,
    NodeType.AGE.value: _legacy_age,
    NodeType.QF.value: _legacy_qf,
    NodeType.FIDELITE.value: _legacy_threshold("fidelite", "years", "annees_min", "annees_max"),
    NodeType.MULTI_INSCRIPTIONS.value: _legacy_threshold(
        "multi_inscriptions", "count", "nb_inscrits_min", "nb_inscrits_max"
    ),
    NodeType.STATUT_SOCIAL.value: _legacy_statut_social,
}

_UPGRADES: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    LEGACY_SCHEMA_VERSION: _upgrade_v0,
}
