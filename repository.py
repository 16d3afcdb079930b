"""
Database Repository Layer for Partner Attribution
=================================================

Persistent storage and retrieval for partners, deals, touchpoint events and
the per-deal attribution results cache.
"""

import json
import math
import uuid
import logging
from datetime import datetime
from typing import List, Optional, Dict, Any, Union

import pandas as pd

from db import Database
from exceptions import (
    DatabaseError,
    PartnerNotFoundError,
    UnknownModelError,
    ValidationError,
)
from models import (
    AttributionBreakdown,
    AttributionModel,
    Deal,
    Partner,
    PartnerAttribution,
    Touchpoint,
    TouchpointType,
)
from utils import (
    format_timestamp,
    parse_timestamp,
    safe_json_loads,
    sanitize_input,
    utc_now,
    validate_amount,
    validate_email,
)

logger = logging.getLogger(__name__)


def _clean(value: Any) -> Any:
    """pandas returns NaN for NULL in numeric columns."""
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


class AttributionRepository:
    """Repository for managing attribution data."""

    def __init__(self, db: Database):
        self.db = db

    # ========================================================================
    # Partners
    # ========================================================================

    def create_partner(
        self,
        partner_name: str,
        email: str,
        payout_details: Optional[Dict[str, Any]] = None,
        partner_id: Optional[str] = None
    ) -> Partner:
        """Create a new partner and return it."""
        partner_name = sanitize_input(partner_name, max_length=200)
        if not partner_name:
            raise ValidationError("Partner name is required", field="partner_name")
        if not validate_email(email):
            raise ValidationError("Invalid email address", field="email", value=email)

        partner = Partner(
            partner_id=partner_id or str(uuid.uuid4()),
            partner_name=partner_name,
            email=email,
            payout_details=payout_details or {},
            created_at=utc_now()
        )
        self.db.run_sql(
            "INSERT INTO partners(partner_id, partner_name, email, payout_details, created_at) "
            "VALUES (?, ?, ?, ?, ?);",
            (
                partner.partner_id,
                partner.partner_name,
                partner.email,
                json.dumps(partner.payout_details),
                format_timestamp(partner.created_at)
            )
        )
        logger.info(f"Created partner {partner.partner_id} ({partner.partner_name})")
        return partner

    def get_partner(self, partner_id: str) -> Optional[Partner]:
        """Get a partner by ID."""
        df = self.db.read_sql("SELECT * FROM partners WHERE partner_id = ?;", (partner_id,))
        if df.empty:
            return None
        return self._row_to_partner(df.iloc[0].to_dict())

    def list_partners(self, limit: int = 100, offset: int = 0) -> List[Partner]:
        """List partners alphabetically, one page at a time."""
        df = self.db.read_sql(
            "SELECT * FROM partners ORDER BY partner_name ASC, partner_id ASC LIMIT ? OFFSET ?;",
            (int(limit), int(offset))
        )
        return [self._row_to_partner(row) for row in df.to_dict("records")]

    @staticmethod
    def _row_to_partner(row: Dict[str, Any]) -> Partner:
        return Partner(
            partner_id=row["partner_id"],
            partner_name=row["partner_name"],
            email=row["email"],
            payout_details=safe_json_loads(row["payout_details"]) or {},
            created_at=parse_timestamp(row["created_at"]) if row.get("created_at") else None
        )

    # ========================================================================
    # Deals
    # ========================================================================

    def create_deal(
        self,
        amount: float,
        attribution_model: Union[AttributionModel, str],
        closed_date: Optional[Union[datetime, str]] = None,
        deal_id: Optional[str] = None
    ) -> Deal:
        """Record a closed deal and return it."""
        amount = validate_amount(amount)
        try:
            model = AttributionModel(attribution_model)
        except ValueError:
            raise UnknownModelError(attribution_model) from None

        deal = Deal(
            deal_id=deal_id or str(uuid.uuid4()),
            amount=amount,
            attribution_model=model,
            closed_date=parse_timestamp(closed_date) if closed_date else utc_now(),
            created_at=utc_now()
        )
        self.db.run_sql(
            "INSERT INTO deals(deal_id, amount, closed_date, attribution_model, created_at) "
            "VALUES (?, ?, ?, ?, ?);",
            (
                deal.deal_id,
                deal.amount,
                format_timestamp(deal.closed_date),
                deal.attribution_model.value,
                format_timestamp(deal.created_at)
            )
        )
        logger.info(f"Recorded deal {deal.deal_id} ({deal.amount:,.2f}, {model.value})")
        return deal

    def get_deal(self, deal_id: str) -> Optional[Deal]:
        """Get a deal by ID."""
        df = self.db.read_sql("SELECT * FROM deals WHERE deal_id = ?;", (deal_id,))
        if df.empty:
            return None
        return self._row_to_deal(df.iloc[0].to_dict())

    def list_deals(self, limit: int = 100, offset: int = 0) -> List[Deal]:
        """List deals, most recently closed first."""
        df = self.db.read_sql(
            "SELECT * FROM deals ORDER BY closed_date DESC LIMIT ? OFFSET ?;",
            (int(limit), int(offset))
        )
        return [self._row_to_deal(row) for row in df.to_dict("records")]

    @staticmethod
    def _row_to_deal(row: Dict[str, Any]) -> Deal:
        return Deal(
            deal_id=row["deal_id"],
            amount=float(row["amount"]),
            attribution_model=AttributionModel(row["attribution_model"]),
            closed_date=parse_timestamp(row["closed_date"]),
            created_at=parse_timestamp(row["created_at"]) if row.get("created_at") else None
        )

    # ========================================================================
    # Touchpoint Events
    # ========================================================================

    def record_touchpoint(
        self,
        partner_id: str,
        deal_id: str,
        touchpoint_type: Union[TouchpointType, str],
        timestamp: Optional[Union[datetime, str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Touchpoint:
        """
        Record a partner touchpoint on a deal.

        Raises:
            ValidationError: unknown touchpoint type or malformed timestamp
            PartnerNotFoundError: partner doesn't exist
        """
        try:
            touchpoint_type = TouchpointType(touchpoint_type).value
        except ValueError:
            raise ValidationError(
                f"Unknown touchpoint type: {touchpoint_type}",
                field="touchpoint_type",
                value=touchpoint_type
            ) from None

        partner = self.get_partner(partner_id)
        if partner is None:
            raise PartnerNotFoundError(partner_id)

        touchpoint = Touchpoint(
            partner_id=partner_id,
            partner_name=partner.partner_name,
            deal_id=deal_id,
            timestamp=timestamp if timestamp is not None else utc_now(),
            touchpoint_type=touchpoint_type,
            metadata=metadata or {},
            event_id=str(uuid.uuid4())
        )
        self.db.run_sql(
            "INSERT INTO events(event_id, partner_id, deal_id, timestamp, touchpoint_type, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?);",
            (
                touchpoint.event_id,
                touchpoint.partner_id,
                touchpoint.deal_id,
                format_timestamp(touchpoint.timestamp),
                touchpoint.touchpoint_type,
                json.dumps(touchpoint.metadata),
                format_timestamp(utc_now())
            )
        )
        logger.debug(f"Recorded {touchpoint_type} touchpoint by {partner_id} on deal {deal_id}")
        return touchpoint

    def list_events(
        self,
        deal_id: Optional[str] = None,
        partner_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Touchpoint]:
        """List touchpoint events, newest first, optionally filtered."""
        sql = (
            "SELECT e.*, COALESCE(p.partner_name, e.partner_id) AS partner_name "
            "FROM events e LEFT JOIN partners p ON e.partner_id = p.partner_id WHERE 1=1"
        )
        params: List[Any] = []

        if deal_id:
            sql += " AND e.deal_id = ?"
            params.append(deal_id)

        if partner_id:
            sql += " AND e.partner_id = ?"
            params.append(partner_id)

        sql += " ORDER BY e.timestamp DESC, e.seq DESC LIMIT ? OFFSET ?;"
        params.extend([int(limit), int(offset)])

        df = self.db.read_sql(sql, tuple(params))
        return [self._row_to_touchpoint(row) for row in df.to_dict("records")]

    def get_deal_touchpoints(self, deal_id: str) -> List[Touchpoint]:
        """All touchpoints on a deal, oldest first; equal timestamps keep storage order."""
        df = self.db.read_sql(
            "SELECT e.*, COALESCE(p.partner_name, e.partner_id) AS partner_name "
            "FROM events e LEFT JOIN partners p ON e.partner_id = p.partner_id "
            "WHERE e.deal_id = ? ORDER BY e.timestamp ASC, e.seq ASC;",
            (deal_id,)
        )
        return [self._row_to_touchpoint(row) for row in df.to_dict("records")]

    @staticmethod
    def _row_to_touchpoint(row: Dict[str, Any]) -> Touchpoint:
        return Touchpoint(
            partner_id=row["partner_id"],
            partner_name=row["partner_name"],
            deal_id=row["deal_id"],
            timestamp=row["timestamp"],
            touchpoint_type=row["touchpoint_type"],
            metadata=safe_json_loads(row["metadata"]) or {},
            event_id=row["event_id"]
        )

    # ========================================================================
    # Attribution Results Cache
    # ========================================================================

    def save_attribution_results(self, breakdown: AttributionBreakdown) -> int:
        """
        Replace all cached rows for the breakdown's deal.

        The delete and the inserts run in a single transaction; on failure
        the previous rows stay in place.

        Returns:
            Number of rows written
        """
        if not breakdown.deal_id:
            raise ValidationError("Breakdown has no deal_id", field="deal_id")

        calculated_at = format_timestamp(breakdown.calculated_at)
        try:
            with self.db.transaction() as tx:
                tx.execute("DELETE FROM attribution_results WHERE deal_id = ?;", (breakdown.deal_id,))
                for attr in breakdown.attributions:
                    tx.execute(
                        "INSERT INTO attribution_results("
                        "result_id, deal_id, partner_id, model, total_amount, attribution_percentage, "
                        "payout_amount, touchpoints, role, calculated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                        (
                            str(uuid.uuid4()),
                            breakdown.deal_id,
                            attr.partner_id,
                            breakdown.model.value,
                            breakdown.total_amount,
                            attr.percentage,
                            attr.payout,
                            attr.touchpoints,
                            attr.role,
                            calculated_at
                        )
                    )
        except Exception as e:
            raise DatabaseError(str(e), operation="save_attribution_results") from e

        logger.info(f"Cached {len(breakdown.attributions)} attribution rows for deal {breakdown.deal_id}")
        return len(breakdown.attributions)

    def load_cached_attribution(self, deal_id: str) -> Optional[AttributionBreakdown]:
        """
        Previously saved breakdown for a deal, payout descending.

        Returns:
            AttributionBreakdown with cached=True, or None if nothing is cached
        """
        df = self.db.read_sql(
            "SELECT ar.*, COALESCE(p.partner_name, ar.partner_id) AS partner_name "
            "FROM attribution_results ar LEFT JOIN partners p ON ar.partner_id = p.partner_id "
            "WHERE ar.deal_id = ? ORDER BY ar.payout_amount DESC;",
            (deal_id,)
        )
        if df.empty:
            return None

        rows = df.to_dict("records")
        first = rows[0]
        return AttributionBreakdown(
            deal_id=deal_id,
            total_amount=float(first["total_amount"]),
            model=AttributionModel(first["model"]),
            attributions=[
                PartnerAttribution(
                    partner_id=row["partner_id"],
                    partner_name=row["partner_name"],
                    percentage=float(row["attribution_percentage"]),
                    payout=float(row["payout_amount"]),
                    touchpoints=int(row["touchpoints"]),
                    role=_clean(row.get("role"))
                )
                for row in rows
            ],
            calculated_at=parse_timestamp(first["calculated_at"]),
            cached=True
        )

    def cached_results_frame(self) -> pd.DataFrame:
        """All cached attribution rows joined with partner names (for exports)."""
        return self.db.read_sql(
            "SELECT ar.deal_id, ar.partner_id, COALESCE(p.partner_name, ar.partner_id) AS partner_name, "
            "ar.model, ar.attribution_percentage, ar.payout_amount, ar.touchpoints, ar.role, ar.calculated_at "
            "FROM attribution_results ar LEFT JOIN partners p ON ar.partner_id = p.partner_id "
            "ORDER BY ar.deal_id, ar.payout_amount DESC;"
        )
