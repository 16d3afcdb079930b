"""
Partner Attribution Data Models
===============================

Types shared by the attribution engine, the repository and the dashboard.

Core Types:
1. Partner - Who can earn credit
2. Deal - A closed sale with an amount and a selected attribution model
3. Touchpoint - Evidence of partner involvement in a deal
4. AttributionBreakdown - The computed, normalized per-partner split
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Dict, List, Any

from utils import parse_timestamp, format_timestamp


# ============================================================================
# Enums and Constants
# ============================================================================

class AttributionModel(str, Enum):
    """Attribution calculation methodologies"""
    EQUAL = "equal"                  # Divide evenly among unique partners
    ROLE_BASED = "role-based"        # Weight by touchpoint role
    FIRST_TOUCH = "first-touch"      # 100% to earliest partner
    LAST_TOUCH = "last-touch"        # 100% to latest partner
    TIME_DECAY = "time-decay"        # Exponential recency weighting


class TouchpointType(str, Enum):
    """Role a partner played in a touchpoint"""
    REFERRAL = "referral"
    DEMO = "demo"
    INTRO = "intro"
    SUPPORT = "support"
    CLOSER = "closer"
    OTHER = "other"


DEFAULT_ROLE_WEIGHTS: Dict[str, float] = {
    TouchpointType.REFERRAL.value: 0.25,
    TouchpointType.DEMO.value: 0.15,
    TouchpointType.INTRO.value: 0.15,
    TouchpointType.SUPPORT.value: 0.10,
    TouchpointType.CLOSER.value: 0.35,
    TouchpointType.OTHER.value: 0.05,
}

HALF_LIFE_DAYS = 7

MODEL_DESCRIPTIONS = {
    AttributionModel.EQUAL: "Equal credit to every partner involved",
    AttributionModel.ROLE_BASED: "Weighted by touchpoint role (closer 35%, referral 25%, ...)",
    AttributionModel.FIRST_TOUCH: "100% credit to the first partner",
    AttributionModel.LAST_TOUCH: "100% credit to the last partner",
    AttributionModel.TIME_DECAY: f"More credit to recent partners ({HALF_LIFE_DAYS}-day half-life)",
}


@dataclass
class AttributionConfig:
    """Tunable constants used by the attribution engine."""
    role_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_ROLE_WEIGHTS))
    half_life: timedelta = timedelta(days=HALF_LIFE_DAYS)

    def weight_for(self, touchpoint_type: Optional[str]) -> float:
        """Role weight, falling back to the 'other' weight for unknown or missing roles."""
        fallback = self.role_weights.get(TouchpointType.OTHER.value, DEFAULT_ROLE_WEIGHTS["other"])
        if not touchpoint_type:
            return fallback
        return self.role_weights.get(touchpoint_type, fallback)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class Partner:
    partner_id: str
    partner_name: str
    email: str
    payout_details: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partner_id": self.partner_id,
            "partner_name": self.partner_name,
            "email": self.email,
            "payout_details": self.payout_details,
            "created_at": format_timestamp(self.created_at) if self.created_at else None,
        }


@dataclass
class Deal:
    """A closed deal. Attribution is a pure function of (amount, touchpoints, model)."""
    deal_id: str
    amount: float
    attribution_model: AttributionModel
    closed_date: datetime
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "amount": self.amount,
            "attribution_model": self.attribution_model.value,
            "closed_date": format_timestamp(self.closed_date),
            "created_at": format_timestamp(self.created_at) if self.created_at else None,
        }


@dataclass
class Touchpoint:
    """
    Evidence of partner involvement in a deal.

    Touchpoints are immutable once recorded. The timestamp is always held
    as a timezone-aware UTC datetime; strings are parsed on construction.
    """
    partner_id: str
    partner_name: str
    deal_id: str
    timestamp: datetime
    touchpoint_type: Optional[str] = TouchpointType.OTHER.value
    metadata: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[str] = None

    def __post_init__(self):
        self.timestamp = parse_timestamp(self.timestamp)
        if isinstance(self.touchpoint_type, TouchpointType):
            self.touchpoint_type = self.touchpoint_type.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "partner_id": self.partner_id,
            "partner_name": self.partner_name,
            "deal_id": self.deal_id,
            "timestamp": format_timestamp(self.timestamp),
            "touchpoint_type": self.touchpoint_type,
            "metadata": self.metadata,
        }


@dataclass
class PartnerAttribution:
    """One partner's share of a deal."""
    partner_id: str
    partner_name: str
    percentage: float                   # 0-100
    payout: float                       # currency units
    touchpoints: int
    role: Optional[str] = None          # comma-joined roles (role-based model only)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "partner_id": self.partner_id,
            "partner_name": self.partner_name,
            "percentage": self.percentage,
            "payout": self.payout,
            "touchpoints": self.touchpoints,
        }
        if self.role is not None:
            data["role"] = self.role
        return data


@dataclass
class AttributionBreakdown:
    """
    Normalized credit split for one deal under one model.

    An empty attributions list means no attribution was possible (no
    touchpoints), not an error.
    """
    deal_id: Optional[str]
    total_amount: float
    model: AttributionModel
    attributions: List[PartnerAttribution]
    calculated_at: datetime
    cached: bool = False

    @property
    def total_payout(self) -> float:
        return round(sum(a.payout for a in self.attributions), 2)

    @property
    def total_percentage(self) -> float:
        return round(sum(a.percentage for a in self.attributions), 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "total_amount": self.total_amount,
            "model": self.model.value,
            "attributions": [a.to_dict() for a in self.attributions],
            "calculated_at": format_timestamp(self.calculated_at),
            "cached": self.cached,
        }
