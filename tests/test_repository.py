"""Tests for the attribution repository."""

import pytest
from datetime import datetime, timedelta, timezone

from attribution_engine import AttributionEngine
from db import Database
from exceptions import (
    DatabaseError,
    PartnerNotFoundError,
    UnknownModelError,
    ValidationError,
)
from models import AttributionBreakdown, AttributionModel, PartnerAttribution
from repository import AttributionRepository


CLOSE = datetime(2025, 2, 1, tzinfo=timezone.utc)


@pytest.fixture
def repo(tmp_path):
    db = Database(str(tmp_path / "test.db"))
    db.init_db()
    repository = AttributionRepository(db)
    repository.create_partner("Alice Partners", "alice@test.com", partner_id="p1")
    repository.create_partner("Bob Partners", "bob@test.com", partner_id="p2")
    repository.create_partner("Charlie Partners", "charlie@test.com", partner_id="p3")
    return repository


def make_breakdown(deal_id, *entries, model=AttributionModel.EQUAL, total=1000.0):
    return AttributionBreakdown(
        deal_id=deal_id,
        total_amount=total,
        model=model,
        attributions=list(entries),
        calculated_at=CLOSE
    )


# ============================================================================
# Partners
# ============================================================================

def test_create_and_get_partner(repo):
    partner = repo.create_partner("Delta Co", "delta@test.com", payout_details={"method": "ach"})

    loaded = repo.get_partner(partner.partner_id)

    assert loaded.partner_name == "Delta Co"
    assert loaded.email == "delta@test.com"
    assert loaded.payout_details == {"method": "ach"}
    assert loaded.created_at is not None


def test_get_missing_partner_returns_none(repo):
    assert repo.get_partner("nope") is None


def test_list_partners_sorted_by_name(repo):
    names = [p.partner_name for p in repo.list_partners()]
    assert names == ["Alice Partners", "Bob Partners", "Charlie Partners"]


def test_list_partners_paging(repo):
    assert [p.partner_id for p in repo.list_partners(limit=2)] == ["p1", "p2"]
    assert [p.partner_id for p in repo.list_partners(limit=2, offset=2)] == ["p3"]
    assert repo.list_partners(limit=5, offset=3) == []


@pytest.mark.parametrize("name,email", [("", "x@test.com"), ("   ", "x@test.com"), ("X", "not-an-email")])
def test_create_partner_validation(repo, name, email):
    with pytest.raises(ValidationError):
        repo.create_partner(name, email)


def test_duplicate_partner_email_is_database_error(repo):
    with pytest.raises(DatabaseError):
        repo.create_partner("Another Alice", "alice@test.com")


# ============================================================================
# Deals
# ============================================================================

def test_create_and_get_deal(repo):
    repo.create_deal(2500.5, "time-decay", closed_date="2025-01-15T10:00:00Z", deal_id="D1")

    deal = repo.get_deal("D1")

    assert deal.amount == 2500.5
    assert deal.attribution_model is AttributionModel.TIME_DECAY
    assert deal.closed_date == datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


def test_get_missing_deal_returns_none(repo):
    assert repo.get_deal("missing") is None


@pytest.mark.parametrize("amount", [0, -1, "ten", float("inf"), float("nan"), True])
def test_create_deal_rejects_bad_amount(repo, amount):
    with pytest.raises(ValidationError):
        repo.create_deal(amount, "equal")


def test_create_deal_rejects_unknown_model(repo):
    with pytest.raises(UnknownModelError):
        repo.create_deal(100, "linear")


def test_list_deals_newest_first_with_paging(repo):
    for i in range(5):
        repo.create_deal(100 + i, "equal", closed_date=CLOSE + timedelta(days=i), deal_id=f"D{i}")

    assert [d.deal_id for d in repo.list_deals()] == ["D4", "D3", "D2", "D1", "D0"]
    assert [d.deal_id for d in repo.list_deals(limit=2, offset=1)] == ["D3", "D2"]


# ============================================================================
# Touchpoints
# ============================================================================

def test_record_touchpoint(repo):
    tp = repo.record_touchpoint("p1", "D1", "referral", timestamp="2025-01-01T09:00:00Z", metadata={"note": "x"})

    assert tp.partner_name == "Alice Partners"
    assert tp.event_id

    stored = repo.get_deal_touchpoints("D1")
    assert len(stored) == 1
    assert stored[0].touchpoint_type == "referral"
    assert stored[0].metadata == {"note": "x"}
    assert stored[0].timestamp == datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


def test_record_touchpoint_defaults_timestamp_to_now(repo):
    before = datetime.now(timezone.utc) - timedelta(seconds=1)
    tp = repo.record_touchpoint("p1", "D1", "demo")
    assert tp.timestamp >= before


def test_record_touchpoint_rejects_unknown_type(repo):
    with pytest.raises(ValidationError) as exc_info:
        repo.record_touchpoint("p1", "D1", "carrier-pigeon")
    assert exc_info.value.field == "touchpoint_type"


def test_record_touchpoint_rejects_bad_timestamp(repo):
    with pytest.raises(ValidationError):
        repo.record_touchpoint("p1", "D1", "demo", timestamp="yesterday-ish")


def test_record_touchpoint_requires_partner(repo):
    with pytest.raises(PartnerNotFoundError):
        repo.record_touchpoint("ghost", "D1", "demo")


def test_deal_touchpoints_ordered_with_stable_ties(repo):
    same = "2025-01-05T12:00:00Z"
    repo.record_touchpoint("p3", "D1", "closer", timestamp="2025-01-09T00:00:00Z")
    repo.record_touchpoint("p2", "D1", "demo", timestamp=same)
    repo.record_touchpoint("p1", "D1", "intro", timestamp=same)
    repo.record_touchpoint("p1", "D2", "intro", timestamp="2025-01-01T00:00:00Z")

    touchpoints = repo.get_deal_touchpoints("D1")

    assert [tp.partner_id for tp in touchpoints] == ["p2", "p1", "p3"]


def test_timestamps_with_offsets_order_chronologically(repo):
    # 10:00+05:00 is 05:00Z, earlier than 06:00Z
    repo.record_touchpoint("p1", "D1", "demo", timestamp="2025-01-05T06:00:00Z")
    repo.record_touchpoint("p2", "D1", "demo", timestamp="2025-01-05T10:00:00+05:00")

    assert [tp.partner_id for tp in repo.get_deal_touchpoints("D1")] == ["p2", "p1"]


def test_list_events_filters_and_order(repo):
    repo.record_touchpoint("p1", "D1", "referral", timestamp="2025-01-01T00:00:00Z")
    repo.record_touchpoint("p2", "D1", "demo", timestamp="2025-01-02T00:00:00Z")
    repo.record_touchpoint("p1", "D2", "closer", timestamp="2025-01-03T00:00:00Z")

    assert [e.deal_id for e in repo.list_events()] == ["D2", "D1", "D1"]
    assert [e.partner_id for e in repo.list_events(deal_id="D1")] == ["p2", "p1"]
    assert [e.deal_id for e in repo.list_events(partner_id="p1")] == ["D2", "D1"]
    assert len(repo.list_events(limit=1, offset=1)) == 1


# ============================================================================
# Attribution Results Cache
# ============================================================================

def test_load_cached_attribution_none_when_empty(repo):
    assert repo.load_cached_attribution("D1") is None


def test_save_and_load_cached_attribution(repo):
    breakdown = make_breakdown(
        "D1",
        PartnerAttribution("p1", "Alice Partners", 25.0, 250.0, 1),
        PartnerAttribution("p2", "Bob Partners", 75.0, 750.0, 2, role="closer, demo"),
        model=AttributionModel.ROLE_BASED
    )

    assert repo.save_attribution_results(breakdown) == 2
    cached = repo.load_cached_attribution("D1")

    assert cached.cached is True
    assert cached.model is AttributionModel.ROLE_BASED
    assert cached.total_amount == 1000.0
    assert cached.calculated_at == CLOSE
    assert [a.partner_id for a in cached.attributions] == ["p2", "p1"]
    assert cached.attributions[0].role == "closer, demo"
    assert cached.attributions[0].touchpoints == 2
    assert cached.attributions[1].role is None
    assert cached.attributions[1].partner_name == "Alice Partners"


def test_save_replaces_previous_rows(repo):
    repo.save_attribution_results(make_breakdown(
        "D1",
        PartnerAttribution("p1", "Alice Partners", 50.0, 500.0, 1),
        PartnerAttribution("p2", "Bob Partners", 50.0, 500.0, 1),
    ))
    repo.save_attribution_results(make_breakdown(
        "D1",
        PartnerAttribution("p3", "Charlie Partners", 100.0, 1000.0, 1),
        model=AttributionModel.LAST_TOUCH
    ))

    cached = repo.load_cached_attribution("D1")

    assert [a.partner_id for a in cached.attributions] == ["p3"]
    assert cached.model is AttributionModel.LAST_TOUCH
    assert repo.db.table_count("attribution_results") == 1


def test_save_only_touches_its_own_deal(repo):
    repo.save_attribution_results(make_breakdown("D1", PartnerAttribution("p1", "A", 100.0, 1000.0, 1)))
    repo.save_attribution_results(make_breakdown("D2", PartnerAttribution("p2", "B", 100.0, 1000.0, 1)))
    repo.save_attribution_results(make_breakdown("D1"))

    assert repo.load_cached_attribution("D1") is None
    assert repo.load_cached_attribution("D2").attributions[0].partner_id == "p2"


def test_failed_save_keeps_previous_rows(repo):
    repo.save_attribution_results(make_breakdown(
        "D1",
        PartnerAttribution("p1", "Alice Partners", 100.0, 1000.0, 1),
    ))

    broken = make_breakdown(
        "D1",
        PartnerAttribution("p2", "Bob Partners", 50.0, 500.0, 1),
        PartnerAttribution(None, "Nobody", 50.0, 500.0, 1),
    )
    with pytest.raises(DatabaseError):
        repo.save_attribution_results(broken)

    cached = repo.load_cached_attribution("D1")
    assert [a.partner_id for a in cached.attributions] == ["p1"]


def test_save_requires_deal_id(repo):
    with pytest.raises(ValidationError):
        repo.save_attribution_results(make_breakdown(None))


def test_engine_output_roundtrips_through_cache(repo):
    repo.record_touchpoint("p1", "D1", "referral", timestamp="2025-01-01T00:00:00Z")
    repo.record_touchpoint("p2", "D1", "demo", timestamp="2025-01-02T00:00:00Z")
    repo.record_touchpoint("p3", "D1", "closer", timestamp="2025-01-03T00:00:00Z")

    breakdown = AttributionEngine().calculate(
        repo.get_deal_touchpoints("D1"), "role-based", 10000, calculated_at=CLOSE
    )
    repo.save_attribution_results(breakdown)
    cached = repo.load_cached_attribution("D1")

    assert cached.attributions == breakdown.attributions
    assert cached.deal_id == breakdown.deal_id == "D1"


def test_cached_results_frame(repo):
    repo.save_attribution_results(make_breakdown("D1", PartnerAttribution("p1", "Alice Partners", 100.0, 1000.0, 1)))

    df = repo.cached_results_frame()

    assert len(df) == 1
    assert df.loc[0, "partner_name"] == "Alice Partners"
    assert df.loc[0, "payout_amount"] == 1000.0
