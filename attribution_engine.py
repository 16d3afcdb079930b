"""
Partner Attribution Calculation Engine
======================================

This engine splits credit for a closed deal among partners by:
1. Ordering touchpoints by timestamp (stable for equal timestamps)
2. Scoring partners using model-specific logic
3. Normalizing so payouts sum exactly to the deal amount
4. Rounding to cents for output

All calculation methods return AttributionBreakdown objects but DON'T write
to the database. That's the caller's responsibility (see repository.py).
"""

import math
import logging
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime
from typing import List, Dict, Any, Optional, Union

from exceptions import UnknownModelError, ConfigurationError
from models import (
    AttributionBreakdown,
    AttributionConfig,
    AttributionModel,
    PartnerAttribution,
    Touchpoint,
)
from utils import parse_timestamp, utc_now, validate_amount

logger = logging.getLogger(__name__)

# Payout drift above this is pushed onto the largest holder before rounding
RESIDUE_TOLERANCE = 0.01


class AttributionEngine:
    """
    Calculate partner credit splits for a deal.

    This engine is stateless - it takes inputs (touchpoints, model, amount)
    and returns a breakdown. No database dependencies, safe to share
    between threads.
    """

    def __init__(self, config: Optional[AttributionConfig] = None):
        self.config = config or AttributionConfig()
        self._validate_config(self.config)

    @staticmethod
    def _validate_config(config: AttributionConfig) -> None:
        if config.half_life.total_seconds() <= 0:
            raise ConfigurationError("Half-life must be positive", setting_key="half_life")
        for role, weight in config.role_weights.items():
            if weight <= 0:
                raise ConfigurationError(
                    f"Role weight for '{role}' must be positive", setting_key="role_weights"
                )

    def calculate(
        self,
        touchpoints: List[Touchpoint],
        model: Union[AttributionModel, str],
        deal_amount: float,
        deal_id: Optional[str] = None,
        calculated_at: Optional[Union[datetime, str]] = None
    ) -> AttributionBreakdown:
        """
        Main entry point: Calculate attribution for a deal.

        Args:
            touchpoints: Partner touchpoints for a single deal
            model: One of the five supported attribution models
            deal_amount: Positive deal amount to split
            deal_id: Deal identifier (defaults to the touchpoints' deal)
            calculated_at: Calculation timestamp (defaults to now)

        Returns:
            AttributionBreakdown, entries ordered by payout descending.
            Empty touchpoints give an empty breakdown.

        Raises:
            UnknownModelError: model is not a supported value
            ValidationError: deal_amount is not positive
        """
        model = resolve_model(model)
        deal_amount = validate_amount(deal_amount)
        calculated_at = parse_timestamp(calculated_at) if calculated_at else utc_now()

        if deal_id is None and touchpoints:
            deal_id = touchpoints[0].deal_id

        # sorted() is stable: equal timestamps keep storage order
        ordered = sorted(touchpoints, key=lambda tp: tp.timestamp)

        if not ordered:
            logger.debug(f"No touchpoints for deal {deal_id}; empty attribution")
            return AttributionBreakdown(
                deal_id=deal_id,
                total_amount=deal_amount,
                model=model,
                attributions=[],
                calculated_at=calculated_at
            )

        logger.debug(f"Calculating {model.value} attribution for deal {deal_id} over {len(ordered)} touchpoints")

        attributions = self._calculate_splits(ordered, model, deal_amount)
        attributions = self._normalize(attributions, deal_amount)

        # Display order only; ties keep first-encountered partner order
        attributions = sorted(attributions, key=lambda a: -a.payout)

        return AttributionBreakdown(
            deal_id=deal_id,
            total_amount=deal_amount,
            model=model,
            attributions=attributions,
            calculated_at=calculated_at
        )

    def _calculate_splits(
        self,
        touchpoints: List[Touchpoint],
        model: AttributionModel,
        deal_amount: float
    ) -> List[PartnerAttribution]:
        """
        Dispatch to the model-specific calculation.

        Returns one unrounded entry per partner in first-encountered order.
        """
        if model == AttributionModel.EQUAL:
            return self._equal(touchpoints, deal_amount)

        elif model == AttributionModel.FIRST_TOUCH:
            return self._first_touch(touchpoints, deal_amount)

        elif model == AttributionModel.LAST_TOUCH:
            return self._last_touch(touchpoints, deal_amount)

        elif model == AttributionModel.ROLE_BASED:
            return self._role_based(touchpoints, deal_amount)

        elif model == AttributionModel.TIME_DECAY:
            return self._time_decay(touchpoints, deal_amount)

        raise UnknownModelError(model)

    # ========================================================================
    # Calculation Methods (one per attribution model)
    # ========================================================================

    def _equal(self, touchpoints: List[Touchpoint], amount: float) -> List[PartnerAttribution]:
        """
        Divide 100% evenly among unique partners.

        Repeat touchpoints by one partner don't increase their share.
        Example: 3 partners -> each gets 33.33%
        """
        groups = _group_by_partner(touchpoints)
        unique_partners = len(groups)
        percentage = 100.0 / unique_partners
        payout = amount / unique_partners

        return [
            PartnerAttribution(
                partner_id=partner_id,
                partner_name=group["name"],
                percentage=percentage,
                payout=payout,
                touchpoints=group["touchpoints"]
            )
            for partner_id, group in groups.items()
        ]

    def _first_touch(self, touchpoints: List[Touchpoint], amount: float) -> List[PartnerAttribution]:
        """
        100% credit to the earliest touchpoint's partner.
        """
        return [self._single_winner(touchpoints[0], touchpoints, amount)]

    def _last_touch(self, touchpoints: List[Touchpoint], amount: float) -> List[PartnerAttribution]:
        """
        100% credit to the most recent touchpoint's partner.
        """
        return [self._single_winner(touchpoints[-1], touchpoints, amount)]

    @staticmethod
    def _single_winner(
        winner: Touchpoint,
        touchpoints: List[Touchpoint],
        amount: float
    ) -> PartnerAttribution:
        count = sum(1 for tp in touchpoints if tp.partner_id == winner.partner_id)
        return PartnerAttribution(
            partner_id=winner.partner_id,
            partner_name=winner.partner_name,
            percentage=100.0,
            payout=amount,
            touchpoints=count
        )

    def _role_based(self, touchpoints: List[Touchpoint], amount: float) -> List[PartnerAttribution]:
        """
        Weight each touchpoint by its role.

        Default weights: referral 0.25, demo 0.15, intro 0.15, support 0.10,
        closer 0.35, other 0.05. Unknown or missing roles use the 'other' weight.
        """
        groups = _group_by_partner(
            touchpoints,
            score=lambda tp: self.config.weight_for(tp.touchpoint_type)
        )
        return _weighted_split(groups, amount, with_roles=True)

    def _time_decay(self, touchpoints: List[Touchpoint], amount: float) -> List[PartnerAttribution]:
        """
        More recent touchpoints get more credit (exponential decay).

        "Now" is the latest touchpoint's timestamp, not wall-clock time, so
        the newest touchpoint weighs 1.0 and weight halves every half-life.

        Formula: weight = exp(-ln(2) / half_life_ms * age_ms)
        """
        now = touchpoints[-1].timestamp
        half_life_ms = self.config.half_life.total_seconds() * 1000.0
        decay_constant = math.log(2) / half_life_ms

        def decayed_weight(tp: Touchpoint) -> float:
            age_ms = (now - tp.timestamp).total_seconds() * 1000.0
            return math.exp(-decay_constant * age_ms)

        groups = _group_by_partner(touchpoints, score=decayed_weight)
        return _weighted_split(groups, amount)

    # ========================================================================
    # Normalization
    # ========================================================================

    def _normalize(
        self,
        attributions: List[PartnerAttribution],
        deal_amount: float
    ) -> List[PartnerAttribution]:
        """
        Reconcile floating-point drift so payouts sum to the deal amount.

        Any residue goes entirely to the entry with the largest payout (the
        first one encountered on ties), whose percentage is recomputed from
        its adjusted payout. Values are then rounded to 2 decimals; the
        rounded payouts can differ from the deal amount by up to half a cent
        per entry.
        """
        if not attributions:
            return []

        total_payout = sum(a.payout for a in attributions)
        diff = deal_amount - total_payout

        if abs(diff) > RESIDUE_TOLERANCE:
            largest = _largest(attributions)
            largest.payout += diff
            largest.percentage = (largest.payout / deal_amount) * 100
            logger.debug(f"Assigned payout residue {diff:.6f} to partner {largest.partner_id}")

        return [
            replace(a, percentage=round(a.percentage, 2), payout=round(a.payout, 2))
            for a in attributions
        ]


# ============================================================================
# Helpers
# ============================================================================

def _group_by_partner(touchpoints: List[Touchpoint], score=None) -> "OrderedDict[str, Dict[str, Any]]":
    """Merge touchpoints per partner, preserving first-encountered order."""
    groups: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for tp in touchpoints:
        group = groups.get(tp.partner_id)
        if group is None:
            group = {"name": tp.partner_name, "touchpoints": 0, "score": 0.0, "roles": []}
            groups[tp.partner_id] = group
        group["touchpoints"] += 1
        if score is not None:
            group["score"] += score(tp)
        role = tp.touchpoint_type or "other"
        if role not in group["roles"]:
            group["roles"].append(role)
    return groups


def _weighted_split(
    groups: "OrderedDict[str, Dict[str, Any]]",
    amount: float,
    with_roles: bool = False
) -> List[PartnerAttribution]:
    total_score = sum(group["score"] for group in groups.values())

    return [
        PartnerAttribution(
            partner_id=partner_id,
            partner_name=group["name"],
            percentage=(group["score"] / total_score) * 100,
            payout=(group["score"] / total_score) * amount,
            touchpoints=group["touchpoints"],
            role=", ".join(group["roles"]) if with_roles else None
        )
        for partner_id, group in groups.items()
    ]


def _largest(attributions: List[PartnerAttribution]) -> PartnerAttribution:
    # max() returns the first maximal element
    return max(attributions, key=lambda a: a.payout)


def resolve_model(model: Union[AttributionModel, str]) -> AttributionModel:
    """
    Convert a model value to AttributionModel.

    Raises:
        UnknownModelError: for any value outside the five supported models
    """
    if isinstance(model, AttributionModel):
        return model
    try:
        return AttributionModel(model)
    except ValueError:
        raise UnknownModelError(model) from None


def compute_attribution(
    touchpoints: List[Touchpoint],
    model: Union[AttributionModel, str],
    deal_amount: float,
    deal_id: Optional[str] = None,
    config: Optional[AttributionConfig] = None,
    calculated_at: Optional[Union[datetime, str]] = None
) -> AttributionBreakdown:
    """Compute a breakdown with a throwaway engine."""
    engine = AttributionEngine(config)
    return engine.calculate(touchpoints, model, deal_amount, deal_id=deal_id, calculated_at=calculated_at)


def explain_attribution(
    entry: PartnerAttribution,
    model: Union[AttributionModel, str],
    config: Optional[AttributionConfig] = None
) -> str:
    """
    Generate human-readable explanation of how a partner's share was calculated.
    """
    model = resolve_model(model)
    config = config or AttributionConfig()
    share = f"{entry.percentage:.2f}%"

    if model == AttributionModel.EQUAL:
        return f"Equal split across partners ({entry.touchpoints} touchpoints) → {share}"

    elif model == AttributionModel.FIRST_TOUCH:
        return "First touch (earliest partner) → 100%"

    elif model == AttributionModel.LAST_TOUCH:
        return "Last touch (most recent partner) → 100%"

    elif model == AttributionModel.ROLE_BASED:
        return f"Role-weighted: {entry.role or 'other'} → {share}"

    half_life_days = config.half_life.total_seconds() / 86400
    return f"Time-decay ({half_life_days:g}d half-life) → {share}"
