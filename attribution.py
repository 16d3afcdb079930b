"""Attribution retrieval, recalculation and caching for stored deals."""

import logging
import threading
import weakref
from typing import Dict, Optional, Union

from attribution_engine import AttributionEngine, resolve_model
from exceptions import DealNotFoundError
from models import AttributionBreakdown, AttributionModel, Deal
from repository import AttributionRepository

logger = logging.getLogger(__name__)


class AttributionService:
    """
    Compute, cache and serve attribution breakdowns for deals.

    The engine is pure; this class owns reading touchpoints from the
    repository and writing results back to the cache.
    """

    def __init__(self, repository: AttributionRepository, engine: Optional[AttributionEngine] = None):
        self.repository = repository
        self.engine = engine or AttributionEngine()
        # Entries drop out once no caller holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _deal_lock(self, deal_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(deal_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[deal_id] = lock
            return lock

    def _require_deal(self, deal_id: str) -> Deal:
        deal = self.repository.get_deal(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        return deal

    def get_attribution(self, deal_id: str, recalculate: bool = False) -> AttributionBreakdown:
        """
        Cached breakdown for a deal, computing and caching it if needed.

        Args:
            deal_id: Deal to attribute
            recalculate: Ignore the cache and recompute

        Raises:
            DealNotFoundError: deal doesn't exist
        """
        deal = self._require_deal(deal_id)

        if not recalculate:
            cached = self.repository.load_cached_attribution(deal_id)
            if cached is not None:
                logger.debug(f"Serving cached attribution for deal {deal_id}")
                return cached

        return self._compute_and_save(deal)

    def recalculate(self, deal_id: str) -> AttributionBreakdown:
        """Force recalculation with the deal's own model and replace the cache."""
        deal = self._require_deal(deal_id)
        return self._compute_and_save(deal)

    def _compute_and_save(self, deal: Deal) -> AttributionBreakdown:
        # Same-deal recalculations are serialized; last writer wins
        with self._deal_lock(deal.deal_id):
            touchpoints = self.repository.get_deal_touchpoints(deal.deal_id)
            breakdown = self.engine.calculate(
                touchpoints,
                deal.attribution_model,
                deal.amount,
                deal_id=deal.deal_id
            )
            self.repository.save_attribution_results(breakdown)

        logger.info(
            f"Calculated {deal.attribution_model.value} attribution for deal {deal.deal_id}: "
            f"{len(breakdown.attributions)} partners"
        )
        return breakdown

    def preview(self, deal_id: str, model: Union[AttributionModel, str]) -> AttributionBreakdown:
        """
        What-if breakdown for a deal under any model. Nothing is persisted.
        """
        model = resolve_model(model)
        deal = self._require_deal(deal_id)
        touchpoints = self.repository.get_deal_touchpoints(deal_id)
        return self.engine.calculate(touchpoints, model, deal.amount, deal_id=deal_id)

    def compare_models(self, deal_id: str) -> Dict[AttributionModel, AttributionBreakdown]:
        """Preview a deal under every model."""
        deal = self._require_deal(deal_id)
        touchpoints = self.repository.get_deal_touchpoints(deal_id)
        return {
            model: self.engine.calculate(touchpoints, model, deal.amount, deal_id=deal_id)
            for model in AttributionModel
        }
