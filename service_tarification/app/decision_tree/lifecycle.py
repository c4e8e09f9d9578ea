"""
Decision tree lifecycle: draft, locked, duplicated into a new draft.

A tree is locked once it has priced a real subscription. A locked tree is
never modified again; to change the pricing of its tariff, duplicate it and
edit the copy. ``DecisionTree`` values are immutable and every transition
returns a new value.
"""

import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .documents import check_document
from .errors import InvalidTransitionError, TreeAlreadyExistsError, TreeLockedError, TreeNotFoundError
from .models import DisplayMode, Tariff, TreeDocument, TreeStatus

DocumentEdit = Callable[[TreeDocument], TreeDocument]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_tree_id() -> str:
    return str(uuid.uuid4())


class DecisionTree(BaseModel):
    """A versioned decision tree attached to a tariff."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_tree_id)
    tariff_id: str
    display_mode: DisplayMode = DisplayMode.MINIMUM
    locked: bool = False
    locked_at: Optional[datetime] = None
    version: int = Field(default=1, ge=1)
    parent_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    document: TreeDocument = Field(default_factory=TreeDocument)

    @classmethod
    def create(cls, tariff_id: str, display_mode: DisplayMode = DisplayMode.MINIMUM,
               document: Optional[TreeDocument] = None) -> "DecisionTree":
        """New unlocked tree, empty unless a document is given."""
        return cls(
            tariff_id=str(tariff_id),
            display_mode=DisplayMode(display_mode),
            document=document if document is not None else TreeDocument(),
        )

    def lock(self, at: Optional[datetime] = None) -> "DecisionTree":
        """Locked copy of this tree. Locking a locked tree changes nothing."""
        if self.locked:
            return self
        return self.model_copy(update={"locked": True, "locked_at": at or _utcnow()})

    def edit(self, fn: DocumentEdit) -> "DecisionTree":
        """Apply a document edit, e.g. ``tree.edit(lambda d: add_node(d, NodeType.AGE))``."""
        self._require_unlocked()
        return self.with_document(fn(self.document))

    def with_document(self, document: TreeDocument) -> "DecisionTree":
        """Replace the document. The version moves only when the document changes."""
        self._require_unlocked()
        if document == self.document:
            return self
        check_document(document)
        return self.model_copy(update={"document": document, "version": self.version + 1})

    def with_display_mode(self, display_mode: DisplayMode) -> "DecisionTree":
        self._require_unlocked()
        return self.model_copy(update={"display_mode": DisplayMode(display_mode)})

    def duplicate(self) -> "DecisionTree":
        """Editable copy of a locked tree, one version ahead."""
        if not self.locked:
            raise InvalidTransitionError(self.id, "duplicate", "only locked trees can be duplicated")

        return DecisionTree(
            tariff_id=self.tariff_id,
            display_mode=self.display_mode,
            version=self.version + 1,
            parent_id=self.id,
            document=self.document.model_copy(deep=True),
        )

    def status(self) -> TreeStatus:
        return TreeStatus(id=self.id, locked=self.locked, locked_at=self.locked_at, version=self.version)

    def _require_unlocked(self):
        if self.locked:
            raise TreeLockedError(self.id)


class TreeLifecycleManager:
    """In-memory registry of decision trees, one active tree per tariff.

    Trees are values: the registry swaps whole trees on every transition.
    It assumes a single writer.
    """

    def __init__(self, default_display_mode: DisplayMode = DisplayMode.MINIMUM,
                 metrics: Optional[MetricsCollector] = None):
        self.default_display_mode = DisplayMode(default_display_mode)
        self.metrics = metrics or get_metrics_collector("tarification")
        self.logger = get_logger("tarification.lifecycle")
        self.trees: Dict[str, DecisionTree] = {}
        self.active: Dict[str, str] = {}  # tariff id -> tree id

    def create_tree(self, tariff_id: str, display_mode: Optional[DisplayMode] = None,
                    document: Optional[TreeDocument] = None) -> DecisionTree:
        """Create the active tree of a tariff."""
        tariff_id = str(tariff_id)
        if tariff_id in self.active:
            raise TreeAlreadyExistsError(tariff_id)

        if document is not None:
            check_document(document)
        tree = DecisionTree.create(tariff_id, display_mode or self.default_display_mode, document)
        self._store(tree, activate=True)
        self._record("created", tree)
        return tree

    def get_tree(self, tree_id: str) -> DecisionTree:
        tree = self.trees.get(tree_id)
        if tree is None:
            raise TreeNotFoundError(f"Decision tree '{tree_id}' not found", {"tree_id": tree_id})
        return tree

    def get_active_tree(self, tariff_id: str) -> DecisionTree:
        """Tree currently pricing a tariff."""
        tree_id = self.active.get(str(tariff_id))
        if tree_id is None:
            raise TreeNotFoundError(f"Tariff '{tariff_id}' has no decision tree", {"tariff_id": str(tariff_id)})
        return self.trees[tree_id]

    def get_or_create_tree(self, tariff: Tariff) -> DecisionTree:
        """Active tree of a tariff, created empty on first use."""
        if tariff.id in self.active:
            return self.get_active_tree(tariff.id)
        return self.create_tree(tariff.id)

    def update_tree(self, tree_id: str, fn: DocumentEdit) -> DecisionTree:
        """Apply a document edit to an unlocked tree."""
        tree = self.get_tree(tree_id)
        try:
            updated = tree.edit(fn)
        except TreeLockedError:
            self.metrics.record_error("tree_locked")
            self.logger.warning("Edit rejected on locked tree", tree_id=tree_id)
            raise

        if updated is not tree:
            self._store(updated)
            self._record("updated", updated)
        return updated

    def set_display_mode(self, tree_id: str, display_mode: DisplayMode) -> DecisionTree:
        updated = self.get_tree(tree_id).with_display_mode(display_mode)
        self._store(updated)
        return updated

    def lock_tree(self, tree_id: str, at: Optional[datetime] = None) -> DecisionTree:
        tree = self.get_tree(tree_id)
        locked = tree.lock(at)
        if locked is not tree:
            self._store(locked)
            self._record("locked", locked)
        return locked

    def duplicate_tree(self, tree_id: str) -> DecisionTree:
        """Duplicate the tariff's locked active tree; the copy becomes active.

        A tariff has at most one draft at a time, and only its active tree
        can be duplicated, so versions stay linear.
        """
        tree = self.get_tree(tree_id)
        active_id = self.active.get(tree.tariff_id)
        if active_id is not None and active_id != tree_id and not self.trees[active_id].locked:
            raise InvalidTransitionError(
                tree_id, "duplicate", f"tariff already has an editable draft '{active_id}'"
            )
        if active_id != tree_id:
            raise InvalidTransitionError(tree_id, "duplicate", "only the tariff's active tree can be duplicated")

        copy = tree.duplicate()
        self._store(copy, activate=True)
        self._record("duplicated", copy, parent_id=tree_id)
        return copy

    def delete_tree(self, tree_id: str) -> None:
        """Delete an unlocked tree. Its parent, if any, becomes active again."""
        tree = self.get_tree(tree_id)
        if tree.locked:
            raise TreeLockedError(tree_id)

        del self.trees[tree_id]
        if self.active.get(tree.tariff_id) == tree_id:
            if tree.parent_id is not None and tree.parent_id in self.trees:
                self.active[tree.tariff_id] = tree.parent_id
            else:
                del self.active[tree.tariff_id]
        self._record("deleted", tree)

    def status(self, tree_id: str) -> TreeStatus:
        return self.get_tree(tree_id).status()

    def history(self, tariff_id: str) -> List[DecisionTree]:
        """Every tree of a tariff, oldest version first."""
        trees = [tree for tree in self.trees.values() if tree.tariff_id == str(tariff_id)]
        return sorted(trees, key=lambda tree: (tree.version, tree.created_at))

    def _store(self, tree: DecisionTree, activate: bool = False):
        self.trees[tree.id] = tree
        if activate:
            self.active[tree.tariff_id] = tree.id

    def _record(self, event: str, tree: DecisionTree, **extra):
        self.metrics.increment_counter("tree_lifecycle_events_total", event=event)
        self.logger.info(
            f"Decision tree {event}",
            tree_id=tree.id,
            tariff_id=tree.tariff_id,
            version=tree.version,
            **extra
        )
