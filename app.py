from datetime import datetime, time, timedelta

import pandas as pd
import streamlit as st

from config import LOG_LEVEL, LOG_FILE, ATTRIBUTION_HALF_LIFE_DAYS
from db import Database
from repository import AttributionRepository
from attribution import AttributionService
from attribution_engine import AttributionEngine, explain_attribution
from demo_data import seed_demo_data
from exceptions import AttributionError
from models import AttributionConfig, AttributionModel, TouchpointType, MODEL_DESCRIPTIONS
from partner_analytics import get_overview, get_partner_analytics, summarize_partner_payouts
from dashboards import (
    create_attribution_pie_chart,
    create_partner_performance_bar_chart,
    create_model_usage_chart,
    create_touchpoint_distribution,
)
from exports import breakdown_to_dataframe, breakdowns_to_dataframe, export_to_excel
from utils import setup_logging, dataframe_to_csv_download, format_currency, format_timestamp


@st.cache_resource
def get_services():
    """Build the database, repository and service once per Streamlit process."""
    setup_logging(LOG_LEVEL, LOG_FILE)
    db = Database()
    db.init_db()
    repository = AttributionRepository(db)
    seed_demo_data(repository)
    engine = AttributionEngine(AttributionConfig(half_life=timedelta(days=ATTRIBUTION_HALF_LIFE_DAYS)))
    return db, repository, AttributionService(repository, engine)


st.set_page_config(page_title="Partner Attribution", layout="wide")

db, repository, service = get_services()

st.title("Partner Attribution")

tab_overview, tab_deals, tab_calculator, tab_partners, tab_exports = st.tabs([
    "📊 Overview",
    "🤝 Deals & Touchpoints",
    "🧮 Attribution Calculator",
    "👥 Partners",
    "📤 Exports",
])


# ============================================================================
# Overview
# ============================================================================

with tab_overview:
    col_start, col_end = st.columns(2)
    start_date = col_start.date_input("From", value=None, key="overview_start")
    end_date = col_end.date_input("To", value=None, key="overview_end")

    overview = get_overview(
        db,
        start_date=datetime.combine(start_date, time.min) if start_date else None,
        end_date=datetime.combine(end_date, time.max) if end_date else None,
    )
    stats = overview["overview"]

    m1, m2, m3 = st.columns(3)
    m1.metric("Deals", stats["total_deals"])
    m2.metric("Revenue", format_currency(stats["total_revenue"]))
    m3.metric("Avg deal size", format_currency(stats["avg_deal_size"]))

    st.plotly_chart(create_partner_performance_bar_chart(overview["partners"]), use_container_width=True)

    c1, c2 = st.columns(2)
    c1.plotly_chart(create_model_usage_chart(overview["models"]), use_container_width=True)
    c2.plotly_chart(create_touchpoint_distribution(overview["touchpoints"]), use_container_width=True)

    st.subheader("Recent deals")
    st.dataframe(overview["recent_deals"], use_container_width=True, hide_index=True)


# ============================================================================
# Deals & Touchpoints
# ============================================================================

with tab_deals:
    partners = repository.list_partners()
    partner_options = {p.partner_id: p.partner_name for p in partners}

    with st.expander("➕ Record a closed deal"):
        with st.form("create_deal"):
            deal_id = st.text_input("Deal ID (optional)")
            amount = st.number_input("Amount", min_value=0.0, value=10000.0, step=500.0)
            model = st.selectbox(
                "Attribution model",
                [m.value for m in AttributionModel],
                format_func=lambda v: f"{v} - {MODEL_DESCRIPTIONS[AttributionModel(v)]}"
            )
            if st.form_submit_button("Save deal"):
                try:
                    deal = repository.create_deal(amount, model, deal_id=deal_id.strip() or None)
                    st.success(f"Recorded deal {deal.deal_id}")
                except AttributionError as e:
                    st.error(e.message)

    with st.expander("➕ Record a touchpoint"):
        if not partner_options:
            st.info("Add a partner first.")
        else:
            with st.form("record_touchpoint"):
                tp_deal = st.text_input("Deal ID")
                tp_partner = st.selectbox("Partner", list(partner_options), format_func=partner_options.get)
                tp_type = st.selectbox("Touchpoint type", [t.value for t in TouchpointType])
                tp_date = st.date_input("Date")
                tp_time = st.time_input("Time", value=time(12, 0))
                if st.form_submit_button("Save touchpoint"):
                    try:
                        repository.record_touchpoint(
                            partner_id=tp_partner,
                            deal_id=tp_deal.strip(),
                            touchpoint_type=tp_type,
                            timestamp=datetime.combine(tp_date, tp_time)
                        )
                        st.success("Touchpoint recorded")
                    except AttributionError as e:
                        st.error(e.message)

    deals = repository.list_deals()
    if deals:
        deals_df = pd.DataFrame([d.to_dict() for d in deals])
        st.dataframe(deals_df, use_container_width=True, hide_index=True)

        selected = st.selectbox("Inspect deal", [d.deal_id for d in deals], key="inspect_deal")
        touchpoints = repository.get_deal_touchpoints(selected)
        if touchpoints:
            st.dataframe(
                pd.DataFrame([tp.to_dict() for tp in touchpoints]).drop(columns=["metadata"]),
                use_container_width=True,
                hide_index=True
            )
        else:
            st.info("No touchpoints recorded for this deal yet.")
    else:
        st.info("No deals recorded yet.")


# ============================================================================
# Attribution Calculator
# ============================================================================

with tab_calculator:
    st.caption("Test different attribution models to see how credit is distributed.")
    deals = repository.list_deals()

    if not deals:
        st.info("Record a deal to calculate attribution.")
    else:
        deal_labels = {
            d.deal_id: f"{d.deal_id} - {format_currency(d.amount)} - {d.closed_date:%Y-%m-%d}"
            for d in deals
        }
        col_deal, col_model = st.columns(2)
        calc_deal = col_deal.selectbox("Deal", list(deal_labels), format_func=deal_labels.get)
        calc_model = col_model.selectbox(
            "Model",
            [m.value for m in AttributionModel],
            format_func=lambda v: f"{v} - {MODEL_DESCRIPTIONS[AttributionModel(v)]}"
        )

        b1, b2 = st.columns(2)
        preview_clicked = b1.button("Preview", type="primary")
        recalc_clicked = b2.button("Recalculate & save deal's own model")

        breakdown = None
        if recalc_clicked:
            breakdown = service.recalculate(calc_deal)
            st.success(f"Saved {breakdown.model.value} attribution for {calc_deal}")
        elif preview_clicked:
            breakdown = service.preview(calc_deal, calc_model)
        else:
            breakdown = service.get_attribution(calc_deal)

        if not breakdown.attributions:
            st.warning("No touchpoints for this deal; no attribution possible.")
        else:
            label = "cached" if breakdown.cached else "fresh"
            st.caption(
                f"Model: {breakdown.model.value} · {label} · calculated {format_timestamp(breakdown.calculated_at)} · "
                f"{format_currency(breakdown.total_payout)} across {breakdown.total_percentage:g}%"
            )
            df = breakdown_to_dataframe(breakdown)
            c1, c2 = st.columns([1, 1])
            c1.plotly_chart(create_attribution_pie_chart(df), use_container_width=True)
            c2.dataframe(
                df[["partner_name", "percentage", "payout", "touchpoints", "role"]],
                use_container_width=True,
                hide_index=True
            )
            for entry in breakdown.attributions:
                st.write(f"**{entry.partner_name}**: {explain_attribution(entry, breakdown.model, service.engine.config)}")

        with st.expander("Compare all models"):
            comparison = pd.DataFrame([
                {
                    "model": model.value,
                    **{a.partner_name: a.payout for a in result.attributions},
                }
                for model, result in service.compare_models(calc_deal).items()
            ])
            st.dataframe(comparison.fillna(0.0), use_container_width=True, hide_index=True)


# ============================================================================
# Partners
# ============================================================================

with tab_partners:
    with st.expander("➕ Add a partner"):
        with st.form("create_partner"):
            name = st.text_input("Name")
            email = st.text_input("Email")
            if st.form_submit_button("Save partner"):
                try:
                    partner = repository.create_partner(name, email)
                    st.success(f"Added {partner.partner_name}")
                except AttributionError as e:
                    st.error(e.message)

    partners = repository.list_partners()
    if partners:
        partner_options = {p.partner_id: p.partner_name for p in partners}
        chosen = st.selectbox("Partner", list(partner_options), format_func=partner_options.get)
        analytics = get_partner_analytics(db, chosen)
        partner_stats = analytics["stats"]
        s1, s2, s3 = st.columns(3)
        s1.metric("Deals attributed", partner_stats["total_deals"])
        s2.metric("Total payout", format_currency(partner_stats["total_payout"]))
        s3.metric("Attribution rows", partner_stats["total_attributions"])


        st.subheader("Attributed deals")
        st.dataframe(analytics["deals"], use_container_width=True, hide_index=True)

        c1, c2 = st.columns(2)
        c1.plotly_chart(create_touchpoint_distribution(analytics["touchpoints"]), use_container_width=True)
        c2.subheader("Monthly payouts")
        c2.dataframe(analytics["monthly"], use_container_width=True, hide_index=True)
    else:
        st.info("No partners yet.")


# ============================================================================
# Exports
# ============================================================================

with tab_exports:
    st.caption("Current attribution for every deal (cached where available).")
    breakdowns = [service.get_attribution(d.deal_id) for d in repository.list_deals(limit=1000)]
    export_df = breakdowns_to_dataframe(breakdowns)
    st.dataframe(export_df, use_container_width=True, hide_index=True)

    st.subheader("Payouts by partner")
    payout_summary = summarize_partner_payouts(repository.cached_results_frame())
    st.dataframe(payout_summary, use_container_width=True, hide_index=True)

    csv_bytes, csv_name = dataframe_to_csv_download(export_df, "attribution.csv")
    st.download_button("Download CSV", csv_bytes, file_name=csv_name, mime="text/csv", disabled=export_df.empty)
    st.download_button(
        "Download Excel",
        export_to_excel({"Attribution": export_df, "Partner Payouts": payout_summary}),
        file_name="attribution.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        disabled=export_df.empty
    )
