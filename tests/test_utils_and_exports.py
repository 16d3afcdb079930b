"""Tests for utilities, exports, charts and demo data."""

import logging
import pytest
from datetime import datetime, timezone

import pandas as pd

from attribution import AttributionService
from dashboards import (
    create_attribution_pie_chart,
    create_model_usage_chart,
    create_partner_performance_bar_chart,
    create_touchpoint_distribution,
)
from db import Database
from demo_data import DEMO_DEAL_AMOUNTS, DEMO_PARTNERS, seed_demo_data
from exceptions import ValidationError
from exports import BREAKDOWN_COLUMNS, breakdown_to_dataframe, breakdowns_to_dataframe, export_to_excel
from models import AttributionBreakdown, AttributionModel, PartnerAttribution
from repository import AttributionRepository
from utils import (
    dataframe_to_csv_download,
    format_currency,
    format_percent,
    format_timestamp,
    parse_timestamp,
    safe_json_loads,
    sanitize_input,
    setup_logging,
    validate_amount,
    validate_email,
)


@pytest.fixture
def breakdown():
    return AttributionBreakdown(
        deal_id="D1",
        total_amount=1000.0,
        model=AttributionModel.ROLE_BASED,
        attributions=[
            PartnerAttribution("p2", "Bob", 60.0, 600.0, 2, role="closer"),
            PartnerAttribution("p1", "Alice", 40.0, 400.0, 1, role="referral"),
        ],
        calculated_at=datetime(2025, 1, 1, tzinfo=timezone.utc)
    )


# Utility function tests

def test_safe_json_loads():
    assert safe_json_loads('{"key": "value"}') == {"key": "value"}
    assert safe_json_loads('invalid json') is None
    assert safe_json_loads(None) is None


def test_parse_timestamp_variants():
    expected = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    assert parse_timestamp("2025-01-01T12:00:00Z") == expected
    assert parse_timestamp("2025-01-01T12:00:00.000Z") == expected
    assert parse_timestamp("2025-01-01T14:00:00+02:00") == expected
    assert parse_timestamp(datetime(2025, 1, 1, 12, 0)) == expected
    assert parse_timestamp("2025-01-01") == datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", ["not a date", "2025-13-01", 12345, None])
def test_parse_timestamp_rejects_garbage(value):
    with pytest.raises(ValidationError):
        parse_timestamp(value)


def test_format_timestamp_fixed_width():
    assert format_timestamp(datetime(2025, 1, 2, 3, 4, 5, 678900, tzinfo=timezone.utc)) == "2025-01-02T03:04:05.678Z"
    assert format_timestamp("2025-01-02T05:04:05+02:00") == "2025-01-02T03:04:05.000Z"
    assert len(format_timestamp("2025-01-02")) == len("2025-01-02T00:00:00.000Z")


def test_validate_amount():
    assert validate_amount("12.5") == 12.5
    assert validate_amount(100) == 100.0
    for bad in (0, -5, "x", None, float("nan"), float("inf"), float("-inf"), False):
        with pytest.raises(ValidationError):
            validate_amount(bad)


def test_validate_email():
    assert validate_email("a@b.co") is True
    assert validate_email("no-at-sign") is False
    assert validate_email("") is False


def test_formatting():
    assert format_currency(1234.5) == "$1,234.50"
    assert format_percent(33.333) == "33.33%"


def test_sanitize_input():
    assert sanitize_input("  test  ") == "test"
    assert sanitize_input("a" * 2000, max_length=10) == "a" * 10
    assert sanitize_input("") == ""
    assert sanitize_input(None) == ""
    assert sanitize_input("Acme\x00 Corp\n") == "Acme Corp"
    assert sanitize_input("ab cd", max_length=3) == "ab"


def test_dataframe_to_csv_download():
    csv_bytes, name = dataframe_to_csv_download(pd.DataFrame({"a": [1, 2]}), "out.csv")
    assert name == "out.csv"
    assert csv_bytes.decode("utf-8").splitlines() == ["a", "1", "2"]

    empty_bytes, _ = dataframe_to_csv_download(pd.DataFrame(), "empty.csv")
    assert empty_bytes == b""


def test_setup_logging_replaces_its_own_handlers(tmp_path):
    root = logging.getLogger()
    previous_level = root.level
    log_file = tmp_path / "app.log"

    def own_handlers():
        return [h for h in root.handlers if getattr(h, "_attribution_handler", False)]

    try:
        setup_logging("debug", str(log_file))
        assert root.level == logging.DEBUG
        assert len(own_handlers()) == 2
        assert "Logging at DEBUG" in log_file.read_text()

        setup_logging("not-a-level")
        assert root.level == logging.INFO
        assert len(own_handlers()) == 1
    finally:
        for handler in own_handlers():
            root.removeHandler(handler)
            handler.close()
        root.setLevel(previous_level)


# Export tests

def test_breakdown_to_dataframe(breakdown):
    df = breakdown_to_dataframe(breakdown)

    assert list(df.columns) == BREAKDOWN_COLUMNS
    assert list(df["partner_id"]) == ["p2", "p1"]
    assert df["payout"].sum() == 1000.0
    assert set(df["model"]) == {"role-based"}
    assert set(df["calculated_at"]) == {"2025-01-01T00:00:00.000Z"}


def test_breakdowns_to_dataframe_skips_empty(breakdown):
    empty = AttributionBreakdown("D2", 10.0, AttributionModel.EQUAL, [], breakdown.calculated_at)

    df = breakdowns_to_dataframe([breakdown, empty])
    assert len(df) == 2

    assert breakdowns_to_dataframe([empty]).empty


def test_export_to_excel(breakdown):
    payload = export_to_excel({
        "Attribution": breakdown_to_dataframe(breakdown),
        "Empty": pd.DataFrame(columns=["deal_id"]),
    })

    # xlsx files are zip archives
    assert payload[:2] == b"PK"
    assert len(payload) > 1000


# Chart tests

def test_charts_handle_empty_frames():
    figures = [
        create_attribution_pie_chart(pd.DataFrame()),
        create_partner_performance_bar_chart(pd.DataFrame()),
        create_model_usage_chart(pd.DataFrame()),
        create_touchpoint_distribution(pd.DataFrame()),
    ]
    for fig in figures:
        assert len(fig.data) == 0
        assert len(fig.layout.annotations) == 1


def test_attribution_pie_chart(breakdown):
    fig = create_attribution_pie_chart(breakdown_to_dataframe(breakdown))
    assert list(fig.data[0].labels) == ["Bob", "Alice"]
    assert list(fig.data[0].values) == [600.0, 400.0]


def test_partner_performance_bar_chart_sorted():
    df = pd.DataFrame({"partner_name": ["A", "B"], "total_payout": [100.0, 300.0]})
    fig = create_partner_performance_bar_chart(df)
    assert list(fig.data[0].y) == ["A", "B"]


# Demo data tests

def test_seed_demo_data(tmp_path):
    db = Database(str(tmp_path / "demo.db"))
    db.init_db()
    repo = AttributionRepository(db)
    now = datetime(2025, 6, 1, tzinfo=timezone.utc)

    counts = seed_demo_data(repo, now=now)

    assert counts["partners"] == len(DEMO_PARTNERS)
    assert counts["deals"] == len(DEMO_DEAL_AMOUNTS)
    assert db.table_count("events") == counts["touchpoints"]
    assert {d.attribution_model for d in repo.list_deals()} == set(AttributionModel)

    service = AttributionService(repo)
    for deal in repo.list_deals():
        breakdown = service.get_attribution(deal.deal_id)
        assert breakdown.attributions
        assert breakdown.total_payout == pytest.approx(deal.amount, abs=0.005 * len(breakdown.attributions))

    assert seed_demo_data(repo, now=now) == {"partners": 0, "deals": 0, "touchpoints": 0}


def test_seed_demo_data_is_deterministic(tmp_path):
    now = datetime(2025, 6, 1, tzinfo=timezone.utc)
    snapshots = []
    for name in ("a.db", "b.db"):
        db = Database(str(tmp_path / name))
        db.init_db()
        repo = AttributionRepository(db)
        seed_demo_data(repo, seed=7, now=now)
        snapshots.append([
            (tp.partner_id, tp.deal_id, tp.touchpoint_type, tp.timestamp)
            for tp in repo.list_events(limit=1000)
        ])

    assert snapshots[0] == snapshots[1]
    assert all(ts < now for _, _, _, ts in snapshots[0])
