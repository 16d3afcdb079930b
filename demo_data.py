"""
Demo Data Generator
===================

Seed realistic sample data for attribution demos.

Creates:
- 6 partners (agencies, SIs, referral partners)
- 10 closed deals spread across all five attribution models
- 2-5 partner touchpoints per deal, dated in the weeks before close
"""

import random
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from models import AttributionModel, TouchpointType
from repository import AttributionRepository
from utils import utc_now

logger = logging.getLogger(__name__)


# ============================================================================
# Demo Partner Names
# ============================================================================

DEMO_PARTNERS = {
    "P001": ("Northwind Digital", "alliances@northwind.example"),
    "P002": ("Summit Cloud Partners", "partners@summitcloud.example"),
    "P003": ("Brightpath Consulting", "hello@brightpath.example"),
    "P004": ("Ironclad Integrations", "team@ironclad.example"),
    "P005": ("Referral Collective", "payouts@referralco.example"),
    "P006": ("Atlas Resellers", "ops@atlasresellers.example"),
}

DEMO_DEAL_AMOUNTS = [12000, 45000, 8000, 150000, 27500, 9900, 64000, 18000, 31000, 5000]

# Touchpoint roles in the order a deal usually progresses
DEAL_JOURNEY = [
    TouchpointType.REFERRAL,
    TouchpointType.INTRO,
    TouchpointType.DEMO,
    TouchpointType.SUPPORT,
    TouchpointType.CLOSER,
]


# ============================================================================
# Demo Data Generation
# ============================================================================

def seed_demo_data(
    repository: AttributionRepository,
    seed: int = 42,
    now: Optional[datetime] = None
) -> Dict[str, int]:
    """
    Populate an empty database with demo partners, deals and touchpoints.

    Does nothing if any partner already exists.

    Returns:
        Counts of created partners, deals and touchpoints
    """
    if repository.list_partners(limit=1):
        logger.info("Database already has partners; skipping demo seed")
        return {"partners": 0, "deals": 0, "touchpoints": 0}

    rng = random.Random(seed)
    now = now or utc_now()
    models = list(AttributionModel)
    partner_ids = list(DEMO_PARTNERS)

    for partner_id, (name, email) in DEMO_PARTNERS.items():
        repository.create_partner(name, email, payout_details={"method": "ach"}, partner_id=partner_id)

    touchpoint_count = 0
    for i, amount in enumerate(DEMO_DEAL_AMOUNTS):
        closed_date = now - timedelta(days=rng.randint(1, 120))
        deal = repository.create_deal(
            amount=amount,
            attribution_model=models[i % len(models)],
            closed_date=closed_date,
            deal_id=f"DEAL-{i + 1:03d}"
        )

        journey_length = rng.randint(2, len(DEAL_JOURNEY))
        journey = DEAL_JOURNEY[-journey_length:]
        touched_at = closed_date - timedelta(days=rng.randint(45, 90))

        for touchpoint_type in journey:
            repository.record_touchpoint(
                partner_id=rng.choice(partner_ids),
                deal_id=deal.deal_id,
                touchpoint_type=touchpoint_type,
                timestamp=touched_at,
                metadata={"source": "demo"}
            )
            touchpoint_count += 1
            touched_at = touched_at + timedelta(days=rng.randint(1, 10), hours=rng.randint(0, 23))

    logger.info(f"Seeded demo data: {len(DEMO_PARTNERS)} partners, {len(DEMO_DEAL_AMOUNTS)} deals")
    return {
        "partners": len(DEMO_PARTNERS),
        "deals": len(DEMO_DEAL_AMOUNTS),
        "touchpoints": touchpoint_count,
    }
