"""Tests for single-lead mutations: notes, status workflows and ownership."""

from datetime import datetime, timedelta, timezone

import pytest

from leadsync.errors import LeadWriteError, StoreError
from leadsync.lead_list import LeadCache
from leadsync.models import HistoryKind
from leadsync.mutations import LeadMutationService, PayloadCapture, StatusCapture
from leadsync.pipelines import AMA, BILLCUT
from leadsync.store import InMemoryLeadStore, InMemoryTargetsLedger


class StepClock:
    """Deterministic clock: each call is one second after the previous."""

    def __init__(self, start=datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


def owned_doc(doc, owner="Priya", owner_id="u-priya", **fields):
    return doc(name="Asha Verma", assigned_to=owner, assigned_to_id=owner_id, **fields)


def service(store, pipeline=AMA, **kwargs):
    kwargs.setdefault("clock", StepClock())
    return LeadMutationService(pipeline, store, **kwargs)


@pytest.mark.asyncio
async def test_save_note_updates_lead_and_history(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc)})
    svc = service(store)

    outcome = await svc.save_note(agent, "l1", "  Called, asked for documents  ")
    assert outcome.applied
    assert outcome.lead.note == "Called, asked for documents"

    stored = await store.get("l1")
    assert stored.data["lastNote"] == "Called, asked for documents"
    assert stored.data["lastNoteBy"] == "Priya"

    history = await svc.history("l1")
    assert len(history) == 1
    assert history[0].kind == HistoryKind.NOTE
    assert history[0].created_by == "Priya"


@pytest.mark.asyncio
async def test_empty_note_is_skipped(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc)})
    outcome = await service(store).save_note(agent, "l1", "   ")
    assert outcome.allowed and not outcome.applied
    assert await store.list_history("l1") == []


@pytest.mark.asyncio
async def test_agent_cannot_edit_unassigned_lead(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": doc(name="Asha", assigned_to="-")})
    outcome = await service(store).save_note(agent, "l1", "hello")
    assert outcome.allowed is False
    assert outcome.reason == "lead is unassigned"


@pytest.mark.asyncio
async def test_agent_cannot_touch_someone_elses_lead(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc, owner="Rahul", owner_id="u-rahul")})
    outcome = await service(store).change_status(agent, "l1", "Interested")
    assert outcome.allowed is False
    assert outcome.reason == "lead is owned by another agent"
    assert (await store.get("l1")).data.get("status") is None


@pytest.mark.asyncio
async def test_unknown_status_is_rejected(store_factory, doc, admin):
    store = store_factory(AMA, {"l1": owned_doc(doc)})
    with pytest.raises(ValueError):
        await service(store).change_status(admin, "l1", "Follow-up")


@pytest.mark.asyncio
async def test_plain_status_change_applies_immediately(store_factory, doc, agent):
    store = store_factory(BILLCUT, {"l1": owned_doc(doc)})
    outcome = await service(store, BILLCUT).change_status(agent, "l1", "Interested")
    assert outcome.applied
    # Billcut keeps its status in a differently named field.
    assert (await store.get("l1")).data["category"] == "Interested"


@pytest.mark.asyncio
async def test_capture_status_without_confirmation_is_cancelled(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc, status="Interested")})
    svc = service(store)

    outcome = await svc.change_status(agent, "l1", "Callback")
    assert not outcome.applied
    assert outcome.reason == "status change cancelled"

    declined = PayloadCapture(StatusCapture(callback_at=datetime(2024, 3, 11, 10, 0), confirmed=False))
    outcome = await svc.change_status(agent, "l1", "Callback", capture=declined)
    assert not outcome.applied
    assert (await store.get("l1")).data["status"] == "Interested"


@pytest.mark.asyncio
async def test_follow_up_creates_then_updates_callback(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc)})
    svc = service(store)
    first_time = datetime(2024, 3, 11, 10, 0)
    second_time = datetime(2024, 3, 12, 15, 30)

    first = await svc.change_status(
        agent, "l1", "Callback", capture=PayloadCapture(StatusCapture(callback_at=first_time))
    )
    assert first.lead.status == "Callback"
    assert first.lead.callback_info.scheduled_at == first_time
    created_at = first.lead.callback_info.created_at

    second = await svc.schedule_callback(agent, "l1", second_time)
    assert second.lead.callback_info.scheduled_at == second_time
    # Rescheduling moves the existing callback rather than creating another.
    assert second.lead.callback_info.created_at == created_at

    reloaded = await svc.load("l1")
    assert reloaded.callback_info.scheduled_at == second_time


@pytest.mark.asyncio
async def test_follow_up_requires_a_time(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc)})
    outcome = await service(store).change_status(
        agent, "l1", "Callback", capture=PayloadCapture(StatusCapture())
    )
    assert not outcome.applied
    assert outcome.reason == "callback time is required"


@pytest.mark.asyncio
async def test_language_barrier_records_language(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc)})
    outcome = await service(store).change_status(
        agent, "l1", "Language Barrier", capture=PayloadCapture(StatusCapture(language=" Tamil "))
    )
    assert outcome.lead.language == "Tamil"
    assert (await store.get("l1")).data["language_barrier"] == "Tamil"


@pytest.mark.asyncio
async def test_conversion_and_reversal_adjust_targets(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc, status="Interested")})
    targets = InMemoryTargetsLedger()
    clock = StepClock()
    svc = service(store, targets=targets, clock=clock)

    converted = await svc.change_status(agent, "l1", "Converted", capture=PayloadCapture(StatusCapture()))
    assert converted.lead.converted is True
    assert converted.lead.converted_at is not None
    assert await targets.get("Priya", clock.current) == 1

    reverted = await svc.change_status(agent, "l1", "Interested")
    assert reverted.lead.converted is False
    assert reverted.lead.converted_at is None
    assert await targets.get("Priya", clock.current) == 0


@pytest.mark.asyncio
async def test_conversion_credits_the_assigned_salesperson(store_factory, doc, admin):
    store = store_factory(AMA, {"l1": owned_doc(doc, status="Interested")})
    targets = InMemoryTargetsLedger()
    clock = StepClock()
    svc = service(store, targets=targets, clock=clock)

    await svc.change_status(admin, "l1", "Converted", capture=PayloadCapture(StatusCapture()))
    assert await targets.get("Priya", clock.current) == 1
    assert await targets.get("Meera", clock.current) == 0

    await svc.change_status(admin, "l1", "Interested")
    assert await targets.get("Priya", clock.current) == 0


@pytest.mark.asyncio
async def test_converting_an_unassigned_lead_credits_nobody(store_factory, doc, admin):
    store = store_factory(AMA, {"l1": doc(name="Asha", assigned_to="-", status="Interested")})
    targets = InMemoryTargetsLedger()
    clock = StepClock()
    svc = service(store, targets=targets, clock=clock)

    outcome = await svc.change_status(admin, "l1", "Converted", capture=PayloadCapture(StatusCapture()))
    assert outcome.applied
    assert await targets.get("Meera", clock.current) == 0
    assert await targets.get("-", clock.current) == 0


@pytest.mark.asyncio
async def test_agent_claims_unassigned_lead(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": doc(name="Asha", assigned_to="—")})
    svc = service(store)

    outcome = await svc.assign(agent, "l1")
    assert outcome.applied
    assert outcome.lead.assigned_to == "Priya"

    stored = (await store.get("l1")).data
    assert stored["assigned_to"] == "Priya"
    assert stored["assignedToId"] == "u-priya"

    [entry] = await svc.history("l1")
    assert entry.kind == HistoryKind.ASSIGNMENT
    assert entry.previous_assignee == "Unassigned"
    assert entry.new_assignee == "Priya"


@pytest.mark.asyncio
async def test_agent_cannot_assign_to_someone_else(store_factory, doc, agent, other_agent):
    store = store_factory(AMA, {"l1": doc(name="Asha")})
    outcome = await service(store).assign(agent, "l1", other_agent)
    assert outcome.allowed is False
    assert await store.list_history("l1") == []


@pytest.mark.asyncio
async def test_reassigning_to_self_adds_exactly_one_history_entry(store_factory, doc, agent):
    """Re-assigning an own lead is allowed and records one entry per call."""
    store = store_factory(AMA, {"l1": owned_doc(doc)})
    svc = service(store)

    outcome = await svc.assign(agent, "l1", agent)
    assert outcome.allowed and outcome.applied
    assert len(await svc.history("l1")) == 1

    await svc.assign(agent, "l1", agent)
    assert len(await svc.history("l1")) == 2


@pytest.mark.asyncio
async def test_unassign_writes_sentinel(store_factory, doc, admin):
    store = store_factory(AMA, {"l1": owned_doc(doc)})
    svc = service(store)

    outcome = await svc.unassign(admin, "l1")
    assert outcome.applied
    stored = (await store.get("l1")).data
    assert stored["assigned_to"] == "-"
    assert stored["assignedToId"] == ""

    [entry] = await svc.history("l1")
    assert entry.previous_assignee == "Priya"
    assert entry.new_assignee == "Unassigned"


@pytest.mark.asyncio
async def test_write_failure_rolls_back_cache(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc)}, failing_writes={"l1"})
    lead = AMA.to_lead("l1", owned_doc(doc))
    cache = LeadCache([lead])
    svc = service(store, cache=cache)

    with pytest.raises(LeadWriteError):
        await svc.save_note(agent, "l1", "will not stick")
    assert cache.get("l1") == lead
    assert await store.list_history("l1") == []


@pytest.mark.asyncio
async def test_successful_write_updates_cache(store_factory, doc, agent):
    store = store_factory(AMA, {"l1": owned_doc(doc)})
    cache = LeadCache([AMA.to_lead("l1", owned_doc(doc))])
    svc = service(store, cache=cache)

    await svc.save_note(agent, "l1", "sticks")
    assert cache.get("l1").note == "sticks"


class HistoryRejectingStore(InMemoryLeadStore):
    """Accepts document writes but rejects every history append."""

    async def append_history(self, lead_id, entry):
        raise StoreError("history collection unavailable")


@pytest.mark.asyncio
async def test_failed_write_records_no_history(store_factory, doc, admin, agent):
    store = store_factory(AMA, {"l1": doc(name="Asha")}, failing_writes={"l1"})
    svc = service(store)

    with pytest.raises(LeadWriteError):
        await svc.assign(admin, "l1", agent)
    with pytest.raises(LeadWriteError):
        await svc.save_note(admin, "l1", "never saved")

    stored = (await store.get("l1")).data
    assert stored.get("assigned_to") != "Priya"
    assert await store.list_history("l1") == []


@pytest.mark.asyncio
async def test_history_failure_after_write_keeps_the_change(doc, agent):
    store = HistoryRejectingStore(AMA.collection, documents={"l1": owned_doc(doc)})
    cache = LeadCache([AMA.to_lead("l1", owned_doc(doc))])
    svc = service(store, cache=cache)

    with pytest.raises(LeadWriteError, match="history not recorded"):
        await svc.save_note(agent, "l1", "Call after 5pm")

    assert (await store.get("l1")).data["lastNote"] == "Call after 5pm"
    assert cache.get("l1").note == "Call after 5pm"
