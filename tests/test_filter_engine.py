"""Tests for client-side filtering and sorting."""

from datetime import date, datetime

from leadsync.filter_engine import FilterSortEngine
from leadsync.models import CallbackInfo, FilterState, Lead, LeadView, SortDirection
from leadsync.pipelines import AMA, CRM
from leadsync.query_composer import date_range_millis

engine = FilterSortEngine(AMA)

NOW = datetime(2024, 3, 10, 9, 0)


def five_leads():
    return [
        Lead(id="c", name="Chitra", ingested_at=3000),
        Lead(id="m1", name="Mohan", ingested_at=None),
        Lead(id="a", name="Anil", ingested_at=1000),
        Lead(id="m2", name="", ingested_at=None),
        Lead(id="b", name="Bela", ingested_at=2000),
    ]


def test_sort_is_stable_across_runs(admin):
    """Same leads, same filters, same order every time."""
    state = FilterState(sort_key="ingested_at", sort_direction=SortDirection.ASCENDING)
    first = [lead.id for lead in engine.apply(five_leads(), state, admin, NOW)]
    second = [lead.id for lead in engine.apply(list(reversed(five_leads())), state, admin, NOW)]
    assert first == second


def test_missing_values_last_ascending_first_descending(admin):
    ascending = engine.apply(
        five_leads(), FilterState(sort_key="ingested_at", sort_direction=SortDirection.ASCENDING), admin, NOW
    )
    assert [lead.id for lead in ascending] == ["a", "b", "c", "m1", "m2"]

    descending = engine.apply(
        five_leads(), FilterState(sort_key="ingested_at", sort_direction=SortDirection.DESCENDING), admin, NOW
    )
    assert [lead.id for lead in descending] == ["m2", "m1", "c", "b", "a"]


def test_default_sort_is_newest_first(admin):
    ordered = engine.apply(five_leads(), FilterState(), admin, NOW)
    assert [lead.id for lead in ordered][2:] == ["c", "b", "a"]


def test_text_sort_is_case_insensitive_and_treats_blank_as_missing(admin):
    leads = [Lead(id="1", name="bela"), Lead(id="2", name="Anil"), Lead(id="3", name="  ")]
    state = FilterState(sort_key="name", sort_direction=SortDirection.ASCENDING)
    assert [lead.id for lead in engine.apply(leads, state, admin, NOW)] == ["2", "1", "3"]


def test_status_filter_treats_dash_as_no_status(admin):
    leads = [
        Lead(id="1", status="No Status"),
        Lead(id="2", status=AMA.statuses.normalize("-")),
        Lead(id="3", status="Interested"),
    ]
    result = engine.filter(leads, FilterState(status="No Status"), admin)
    assert [lead.id for lead in result] == ["1", "2"]


def test_source_filter_uses_aliases(admin):
    leads = [Lead(id="1", source="CS"), Lead(id="2", source="credsettle"), Lead(id="3", source="ama")]
    result = engine.filter(leads, FilterState(source="credsettlee"), admin)
    assert {lead.id for lead in result} == {"1", "2"}


def test_assignee_filters(admin, agent):
    leads = [
        Lead(id="1", assigned_to="Priya"),
        Lead(id="2", assigned_to="—"),
        Lead(id="3", assigned_to=None),
        Lead(id="4", assigned_to="Rahul"),
    ]
    assert [lead.id for lead in engine.filter(leads, FilterState(unassigned_only=True), admin)] == ["2", "3"]
    assert [lead.id for lead in engine.filter(leads, FilterState(my_leads=True), agent)] == ["1"]
    assert [lead.id for lead in engine.filter(leads, FilterState(assignee="Rahul"), admin)] == ["4"]


def test_converted_and_date_range(admin):
    start, end = date_range_millis(date(2024, 3, 10), date(2024, 3, 10))
    leads = [
        Lead(id="in", converted=True, ingested_at=start + 1),
        Lead(id="not-converted", converted=False, ingested_at=start + 1),
        Lead(id="too-late", converted=True, ingested_at=end + 1),
        Lead(id="undated", converted=True, ingested_at=None),
    ]
    state = FilterState(converted=True, date_from=date(2024, 3, 10), date_to=date(2024, 3, 10))
    assert [lead.id for lead in engine.filter(leads, state, admin)] == ["in"]


def test_client_filters_limit_what_runs(admin):
    leads = [Lead(id="1", status="Interested", source="ama"), Lead(id="2", status="Closed Lead", source="cs")]
    state = FilterState(status="Interested", source="ama")
    # The store already applied status; only source remains.
    result = engine.filter(leads, state, admin, client_filters=["source"])
    assert [lead.id for lead in result] == ["1"]
    assert engine.filter(leads, state, admin, client_filters=[]) == leads


def test_follow_up_view_orders_by_callback_priority(admin):
    crm_engine = FilterSortEngine(CRM)

    def follow_up(lead_id, when, name=""):
        info = CallbackInfo(scheduled_at=when, scheduled_by="Priya", created_at=NOW) if when else None
        return Lead(id=lead_id, name=name, status="Follow-up", callback_info=info)

    leads = [
        follow_up("none", None),
        follow_up("tomorrow", datetime(2024, 3, 11, 9, 0)),
        Lead(id="not-follow-up", status="Interested"),
        follow_up("today", datetime(2024, 3, 10, 17, 0)),
    ]
    state = FilterState(view=LeadView.FOLLOW_UP)
    assert [lead.id for lead in crm_engine.apply(leads, state, admin, NOW)] == ["today", "tomorrow", "none"]


def test_follow_up_view_uses_user_sort_as_secondary(admin):
    def undated(lead_id, name):
        return Lead(id=lead_id, name=name, status="Callback")

    today = Lead(
        id="today",
        name="Zed",
        status="Callback",
        callback_info=CallbackInfo(scheduled_at=datetime(2024, 3, 10, 12, 0), scheduled_by="P", created_at=NOW),
    )
    leads = [undated("x", "Yash"), undated("y", "Arjun"), today]
    state = FilterState(view=LeadView.FOLLOW_UP, sort_key="name", sort_direction=SortDirection.ASCENDING)
    assert [lead.id for lead in engine.apply(leads, state, admin, NOW)] == ["today", "y", "x"]


def test_apply_is_idempotent(admin):
    state = FilterState(status="Interested", sort_key="name", sort_direction=SortDirection.ASCENDING)
    leads = [Lead(id=str(i), name=n, status="Interested") for i, n in enumerate(["c", "a", "b"])]
    once = engine.apply(leads, state, admin, NOW)
    assert engine.apply(once, state, admin, NOW) == once
