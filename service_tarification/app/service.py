"""
Tarification service facade.

Ties the lifecycle manager, the engine and the subject derivation together
for callers that advertise, simulate or charge a membership fee.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger, set_structure_context
from shared.metrics import MetricsCollector, get_metrics_collector
from .decision_tree.bounds import bounds
from .decision_tree.engine import DecisionTreeEngine
from .decision_tree.lifecycle import DecisionTree, TreeLifecycleManager
from .decision_tree.models import DisplayMode, EvaluationResult, PriceBounds, Tariff
from .subjects import DateLike, SubjectProfile, build_context


@dataclass(frozen=True)
class PriceQuote:
    """Price charged for a subscription, with the tree version that produced it."""
    tariff_id: str
    tree_id: str
    tree_version: int
    result: EvaluationResult

    @property
    def final_price(self) -> Decimal:
        return self.result.final_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tariff_id": self.tariff_id,
            "tree_id": self.tree_id,
            "tree_version": self.tree_version,
            **self.result.to_dict(),
        }


class TarificationService:
    """Entry point for pricing tariffs with decision trees."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 manager: Optional[TreeLifecycleManager] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.config = config or get_config()
        configure_logging(self.config.service_name, self.config.log_level)
        self.metrics = metrics or get_metrics_collector(self.config.service_name)
        self.logger = get_logger("tarification.service")
        self.manager = manager or TreeLifecycleManager(
            default_display_mode=DisplayMode(self.config.default_display_mode),
            metrics=self.metrics,
        )
        self.engine = DecisionTreeEngine(
            max_depth=self.config.max_tree_depth,
            quantum=self.config.money_quantum,
            metrics=self.metrics,
        )

        self.logger.info(
            "Tarification service initialized",
            env=self.config.env,
            max_tree_depth=self.config.max_tree_depth
        )

    def bounds_for(self, tariff: Tariff) -> PriceBounds:
        """Price range of a tariff. A tariff without a tree costs its base price."""
        tree = self._active_tree(tariff)
        if tree is None:
            return PriceBounds(min=tariff.base_price, max=tariff.base_price)
        return bounds(tree, tariff.base_price, self.config.max_tree_depth, self.config.money_quantum)

    def advertised_price(self, tariff: Tariff) -> Decimal:
        """Price shown before a subject is known, per the tree's display mode."""
        tree = self._active_tree(tariff)
        display_mode = tree.display_mode if tree is not None else DisplayMode(self.config.default_display_mode)
        return self.bounds_for(tariff).display_price(display_mode)

    def simulate(self, tariff: Tariff, profile: SubjectProfile,
                 reference_date: Optional[DateLike] = None) -> EvaluationResult:
        """Price a subject without locking anything."""
        set_structure_context(tariff.structure_id)
        context = build_context(profile, reference_date or date.today())
        tree = self._active_tree(tariff)
        if tree is None:
            return self.engine.evaluate((), tariff.base_price, context)
        return self.engine.evaluate_tree(tree, tariff.base_price, context)

    def quote(self, tariff: Tariff, profile: SubjectProfile,
              reference_date: Optional[DateLike] = None) -> PriceQuote:
        """Price a real subscription and lock the tree that produced the price."""
        set_structure_context(tariff.structure_id)
        context = build_context(profile, reference_date or date.today())
        tree = self.manager.get_or_create_tree(tariff)
        result = self.engine.evaluate_tree(tree, tariff.base_price, context)
        tree = self.manager.lock_tree(tree.id)

        self.metrics.record_business_event("tariff_quoted")
        self.logger.info(
            "Tariff quoted",
            tariff_id=tariff.id,
            tree_id=tree.id,
            tree_version=tree.version,
            final_price=str(result.final_price),
            total_reduction=str(result.total_reduction),
        )

        return PriceQuote(tariff_id=tariff.id, tree_id=tree.id, tree_version=tree.version, result=result)

    def _active_tree(self, tariff: Tariff) -> Optional[DecisionTree]:
        if tariff.id not in self.manager.active:
            return None
        return self.manager.get_active_tree(tariff.id)
