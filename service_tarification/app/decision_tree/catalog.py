"""
Catalog of the node types tree authors can pick from.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import yaml

from .errors import MalformedTreeError
from .models import ConditionTypeInfo, NodeType

CATALOG_PATH = Path(__file__).with_name("condition_types.yaml")


@lru_cache(maxsize=None)
def _load(path: Path) -> tuple:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    entries = []
    for entry in data.get("condition_types", []):
        if not entry.get("active", True):
            continue
        try:
            code = NodeType(entry["code"])
        except (KeyError, ValueError):
            raise MalformedTreeError(f"Invalid condition type entry in {path.name}", {"entry": entry})
        entries.append(ConditionTypeInfo(
            code=code,
            label=entry.get("label", code.value),
            description=entry.get("description", ""),
            display_order=int(entry.get("display_order", 0)),
            operators=tuple(entry.get("operators", [])),
        ))

    entries.sort(key=lambda info: info.display_order)
    return tuple(entries)


def condition_types(path: Optional[Path] = None) -> List[ConditionTypeInfo]:
    """Active node types in display order."""
    return list(_load(path or CATALOG_PATH))


def condition_type(code: NodeType, path: Optional[Path] = None) -> ConditionTypeInfo:
    code = NodeType(code)
    for info in condition_types(path):
        if info.code == code:
            return info
    raise MalformedTreeError(f"Condition type '{code.value}' is not available")
