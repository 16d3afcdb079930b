"""
Partner Analytics Module
========================

Dashboard analytics over deals, touchpoint events and cached attribution
results.

Provides:
- Revenue overview (deal count, revenue, average deal size)
- Partner performance ranked by attributed payout
- Attribution model usage
- Touchpoint type distribution
- Per-partner drilldown (deals, touchpoints, monthly payouts)
"""

from datetime import datetime
from typing import Dict, Any, Optional, Tuple, List, Union

import pandas as pd

from db import Database
from exceptions import PartnerNotFoundError
from utils import format_timestamp, safe_json_loads

TOP_PARTNERS_LIMIT = 20
RECENT_DEALS_LIMIT = 10
MONTHLY_LOOKBACK = 12

DateLike = Optional[Union[str, datetime]]


def _date_conditions(column: str, start_date: DateLike, end_date: DateLike) -> Tuple[str, List[str]]:
    """SQL fragment and params restricting a timestamp column to [start, end]."""
    clauses = []
    params = []
    if start_date:
        clauses.append(f"{column} >= ?")
        params.append(format_timestamp(start_date))
    if end_date:
        clauses.append(f"{column} <= ?")
        params.append(format_timestamp(end_date))
    sql = "".join(f" AND {clause}" for clause in clauses)
    return sql, params


def get_overview(
    db: Database,
    start_date: DateLike = None,
    end_date: DateLike = None
) -> Dict[str, Any]:
    """
    Dashboard data for the whole program.

    Deal filters apply to closed_date; touchpoint filters apply to the event timestamp.
    """
    deal_filter, deal_params = _date_conditions("closed_date", start_date, end_date)
    joined_filter, joined_params = _date_conditions("d.closed_date", start_date, end_date)
    event_filter, event_params = _date_conditions("timestamp", start_date, end_date)

    stats = db.read_sql(f"""
        SELECT
            COUNT(*) AS total_deals,
            COALESCE(SUM(amount), 0) AS total_revenue,
            COALESCE(AVG(amount), 0) AS avg_deal_size
        FROM deals
        WHERE 1=1{deal_filter};
    """, tuple(deal_params))

    partners = db.read_sql(f"""
        SELECT
            p.partner_id,
            p.partner_name,
            COUNT(DISTINCT ar.deal_id) AS deals_count,
            COALESCE(SUM(ar.payout_amount), 0) AS total_payout,
            COALESCE(AVG(ar.attribution_percentage), 0) AS avg_attribution_pct
        FROM partners p
        LEFT JOIN (
            SELECT ar.*
            FROM attribution_results ar
            JOIN deals d ON ar.deal_id = d.deal_id
            WHERE 1=1{joined_filter}
        ) ar ON p.partner_id = ar.partner_id
        GROUP BY p.partner_id, p.partner_name
        ORDER BY total_payout DESC, p.partner_name ASC
        LIMIT {TOP_PARTNERS_LIMIT};
    """, tuple(joined_params))

    models = db.read_sql(f"""
        SELECT
            attribution_model,
            COUNT(*) AS count,
            COALESCE(SUM(amount), 0) AS total_amount
        FROM deals
        WHERE 1=1{deal_filter}
        GROUP BY attribution_model
        ORDER BY count DESC;
    """, tuple(deal_params))

    touchpoints = db.read_sql(f"""
        SELECT
            touchpoint_type,
            COUNT(*) AS count
        FROM events
        WHERE 1=1{event_filter}
        GROUP BY touchpoint_type
        ORDER BY count DESC;
    """, tuple(event_params))

    recent_deals = db.read_sql(f"""
        SELECT
            d.deal_id,
            d.amount,
            d.closed_date,
            d.attribution_model,
            COUNT(e.event_id) AS touchpoints_count
        FROM deals d
        LEFT JOIN events e ON d.deal_id = e.deal_id
        GROUP BY d.deal_id, d.amount, d.closed_date, d.attribution_model
        ORDER BY d.closed_date DESC
        LIMIT {RECENT_DEALS_LIMIT};
    """)

    row = stats.iloc[0]
    return {
        "overview": {
            "total_deals": int(row["total_deals"]),
            "total_revenue": float(row["total_revenue"]),
            "avg_deal_size": float(row["avg_deal_size"]),
        },
        "partners": partners,
        "models": models,
        "touchpoints": touchpoints,
        "recent_deals": recent_deals,
        "filters": {
            "start_date": start_date or None,
            "end_date": end_date or None,
        },
    }


def get_partner_analytics(db: Database, partner_id: str) -> Dict[str, Any]:
    """
    Drilldown for a single partner.

    Raises:
        PartnerNotFoundError: partner doesn't exist
    """
    partner_df = db.read_sql("SELECT * FROM partners WHERE partner_id = ?;", (partner_id,))
    if partner_df.empty:
        raise PartnerNotFoundError(partner_id)

    partner = partner_df.iloc[0].to_dict()
    partner["payout_details"] = safe_json_loads(partner.get("payout_details")) or {}

    stats_df = db.read_sql("""
        SELECT
            COUNT(DISTINCT deal_id) AS total_deals,
            COALESCE(SUM(payout_amount), 0) AS total_payout,
            COUNT(*) AS total_attributions
        FROM attribution_results
        WHERE partner_id = ?;
    """, (partner_id,))
    stats = {
        "total_deals": int(stats_df.loc[0, "total_deals"]),
        "total_payout": round(float(stats_df.loc[0, "total_payout"]), 2),
        "total_attributions": int(stats_df.loc[0, "total_attributions"]),
    }

    deals = db.read_sql("""
        SELECT
            d.deal_id,
            d.amount,
            d.closed_date,
            d.attribution_model,
            ar.attribution_percentage,
            ar.payout_amount
        FROM attribution_results ar
        JOIN deals d ON ar.deal_id = d.deal_id
        WHERE ar.partner_id = ?
        ORDER BY d.closed_date DESC;
    """, (partner_id,))

    touchpoints = db.read_sql("""
        SELECT
            touchpoint_type,
            COUNT(*) AS count
        FROM events
        WHERE partner_id = ?
        GROUP BY touchpoint_type
        ORDER BY count DESC;
    """, (partner_id,))

    # closed_date is stored as fixed-width ISO text, so the first 7 chars are YYYY-MM
    monthly = db.read_sql(f"""
        SELECT
            SUBSTR(d.closed_date, 1, 7) AS month,
            COUNT(*) AS deals_count,
            COALESCE(SUM(ar.payout_amount), 0) AS total_payout
        FROM attribution_results ar
        JOIN deals d ON ar.deal_id = d.deal_id
        WHERE ar.partner_id = ?
        GROUP BY SUBSTR(d.closed_date, 1, 7)
        ORDER BY month DESC
        LIMIT {MONTHLY_LOOKBACK};
    """, (partner_id,))

    return {
        "partner": partner,
        "stats": stats,
        "deals": deals,
        "touchpoints": touchpoints,
        "monthly": monthly,
    }


def summarize_partner_payouts(results: pd.DataFrame) -> pd.DataFrame:
    """
    Roll cached attribution rows up per partner.

    Args:
        results: DataFrame with columns partner_id, partner_name, deal_id, payout_amount

    Returns:
        DataFrame with partner_id, partner_name, deals_count, total_payout,
        share_of_total (0-100), sorted by total_payout descending
    """
    columns = ["partner_id", "partner_name", "deals_count", "total_payout", "share_of_total"]
    if results.empty:
        return pd.DataFrame(columns=columns)

    summary = (
        results.groupby(["partner_id", "partner_name"], sort=False)
        .agg(deals_count=("deal_id", "nunique"), total_payout=("payout_amount", "sum"))
        .reset_index()
    )
    grand_total = summary["total_payout"].sum()
    summary["share_of_total"] = (summary["total_payout"] / grand_total * 100).round(2) if grand_total else 0.0
    summary["total_payout"] = summary["total_payout"].round(2)
    return summary.sort_values("total_payout", ascending=False, kind="mergesort").reset_index(drop=True)[columns]
