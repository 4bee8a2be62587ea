"""
Single-lead mutations.

Every method takes the acting operator explicitly, asks the authorization
matrix first, then writes through to the store. When a cache is attached
the change is applied to it optimistically and rolled back if the store
rejects the write.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from leadsync.authorization import MutationKind, can_mutate, is_unassigned
from leadsync.errors import LeadWriteError, StoreError
from leadsync.logging_config import get_logger
from leadsync.metrics import lead_mutations_total
from leadsync.models import Actor, CallbackInfo, HistoryEntry, HistoryKind, Lead
from leadsync.pipelines import PipelineConfig
from leadsync.store import LeadStore, TargetsLedger

logger = get_logger(__name__)

UNASSIGNED_LABEL = "Unassigned"


@dataclass(frozen=True)
class StatusCapture:
    """What the capture form collected before a side-effecting status change."""
    callback_at: Optional[datetime] = None
    language: Optional[str] = None
    confirmed: bool = True


# Called with the lead and the requested status; returning None cancels.
StatusCaptureHook = Callable[[Lead, str], Awaitable[Optional[StatusCapture]]]


class PayloadCapture:
    """Capture hook that answers with values already supplied by the caller."""

    def __init__(self, capture: Optional[StatusCapture]):
        self.capture = capture

    async def __call__(self, lead: Lead, status: str) -> Optional[StatusCapture]:
        return self.capture


@dataclass
class MutationOutcome:
    allowed: bool
    reason: Optional[str] = None
    lead: Optional[Lead] = None
    applied: bool = False

    @classmethod
    def denied(cls, reason: str, lead: Lead) -> "MutationOutcome":
        return cls(allowed=False, reason=reason, lead=lead)

    @classmethod
    def skipped(cls, reason: str, lead: Lead) -> "MutationOutcome":
        return cls(allowed=True, reason=reason, lead=lead, applied=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeadMutationService:
    """Note, status and ownership changes for one pipeline."""

    def __init__(
        self,
        pipeline: PipelineConfig,
        store: LeadStore,
        targets: Optional[TargetsLedger] = None,
        cache=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.pipeline = pipeline
        self.store = store
        self.targets = targets
        self.cache = cache
        self.clock = clock

    async def load(self, lead_id: str) -> Lead:
        doc = await self.store.get(lead_id)
        return self.pipeline.to_lead(doc.id, doc.data)

    def _count(self, kind: MutationKind, outcome: str):
        lead_mutations_total.labels(
            pipeline=self.pipeline.name, kind=kind.value, outcome=outcome
        ).inc()

    def _deny(self, actor: Actor, lead: Lead, kind: MutationKind, reason: str) -> MutationOutcome:
        logger.info(
            "lead_mutation_denied",
            pipeline=self.pipeline.name,
            lead_id=lead.id,
            kind=kind.value,
            actor=actor.name,
            reason=reason,
        )
        self._count(kind, "denied")
        return MutationOutcome.denied(reason, lead)

    async def _commit(
        self,
        lead: Lead,
        kind: MutationKind,
        updates: dict,
        extra_fields: Optional[dict] = None,
        history: Optional[HistoryEntry] = None,
    ) -> Lead:
        """Write `updates` through the cache and the store, rolling back on failure."""
        now = self.clock()
        updates = {**updates, "last_modified": now}
        updated = lead.model_copy(update=updates)

        previous = self.cache.replace(updated) if self.cache is not None else None
        document = self.pipeline.to_document({**updates, **(extra_fields or {})})
        try:
            await self.store.write(lead.id, document)
        except StoreError as e:
            if previous is not None:
                self.cache.replace(previous)
            self._count(kind, "failed")
            logger.error(
                "lead_mutation_failed",
                pipeline=self.pipeline.name,
                lead_id=lead.id,
                kind=kind.value,
                error=str(e),
            )
            raise LeadWriteError(lead.id, str(e)) from e

        if history is not None:
            await self._record_history(lead, kind, history)

        self._count(kind, "applied")
        logger.info(
            "lead_mutation_applied",
            pipeline=self.pipeline.name,
            lead_id=lead.id,
            kind=kind.value,
            fields=sorted(updates),
        )
        return updated

    async def _record_history(self, lead: Lead, kind: MutationKind, entry: HistoryEntry):
        """Append `entry` once the document write has landed; the cache keeps the new value."""
        try:
            await self.store.append_history(lead.id, entry)
        except StoreError as e:
            self._count(kind, "history_failed")
            logger.error(
                "lead_history_append_failed",
                pipeline=self.pipeline.name,
                lead_id=lead.id,
                kind=kind.value,
                error=str(e),
            )
            raise LeadWriteError(lead.id, f"change saved but history not recorded: {e}") from e

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def save_note(self, actor: Actor, lead_id: str, text: str) -> MutationOutcome:
        """Append a note to the history and refresh the lead's latest-note field."""
        lead = await self.load(lead_id)
        decision = can_mutate(actor, lead, MutationKind.EDIT)
        if not decision.allowed:
            return self._deny(actor, lead, MutationKind.EDIT, decision.reason)

        text = (text or "").strip()
        if not text:
            return MutationOutcome.skipped("note is empty", lead)

        now = self.clock()
        entry = HistoryEntry(
            content=text,
            created_by=actor.name,
            created_by_id=actor.id,
            created_at=now,
            kind=HistoryKind.NOTE,
        )
        updated = await self._commit(
            lead,
            MutationKind.EDIT,
            {"note": text},
            extra_fields={"note_by": actor.name, "note_at": now},
            history=entry,
        )
        return MutationOutcome(allowed=True, lead=updated, applied=True)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def change_status(
        self,
        actor: Actor,
        lead_id: str,
        status: str,
        capture: Optional[StatusCaptureHook] = None,
    ) -> MutationOutcome:
        """
        Change a lead's status.

        Follow-up, language-barrier and converted statuses are only
        committed once `capture` confirms; without a hook they are cancelled.
        Moving into or out of converted adjusts the monthly target of the
        lead's assigned salesperson.
        """
        statuses = self.pipeline.statuses
        if not statuses.is_valid(status):
            raise ValueError(f"Unknown status '{status}' for pipeline {self.pipeline.name}")

        lead = await self.load(lead_id)
        decision = can_mutate(actor, lead, MutationKind.CHANGE_STATUS)
        if not decision.allowed:
            return self._deny(actor, lead, MutationKind.CHANGE_STATUS, decision.reason)

        now = self.clock()
        updates = {"status": status}

        if status in statuses.capture_statuses:
            captured = await capture(lead, status) if capture is not None else None
            if captured is None or not captured.confirmed:
                self._count(MutationKind.CHANGE_STATUS, "cancelled")
                return MutationOutcome.skipped("status change cancelled", lead)

            if status == statuses.follow_up:
                if captured.callback_at is None:
                    return MutationOutcome.skipped("callback time is required", lead)
                updates["callback_info"] = self._callback_for(lead, actor, captured.callback_at)
            elif status == statuses.language_barrier:
                if not (captured.language or "").strip():
                    return MutationOutcome.skipped("language is required", lead)
                updates["language"] = captured.language.strip()

        was_converted = lead.status == statuses.converted
        if status == statuses.converted and not was_converted:
            updates["converted"] = True
            updates["converted_at"] = now
        elif was_converted and status != statuses.converted:
            updates["converted"] = False
            updates["converted_at"] = None

        updated = await self._commit(lead, MutationKind.CHANGE_STATUS, updates)

        if status == statuses.converted and not was_converted:
            await self._adjust_target(lead, now, increment=True)
        elif was_converted and status != statuses.converted:
            await self._adjust_target(lead, now, increment=False)

        return MutationOutcome(allowed=True, lead=updated, applied=True)

    async def _adjust_target(self, lead: Lead, when: datetime, increment: bool):
        """Credit (or take back) a conversion for the lead's assigned salesperson."""
        if self.targets is None:
            return
        if is_unassigned(lead.assigned_to):
            logger.info("sales_target_skipped", lead_id=lead.id, reason="lead is unassigned")
            return
        owner = lead.assigned_to.strip()
        try:
            if increment:
                count = await self.targets.increment(owner, lead.assigned_to_id or None, when)
            else:
                count = await self.targets.decrement(owner, when)
            logger.info(
                "sales_target_updated",
                user=owner,
                converted_leads=count,
                increment=increment,
            )
        except Exception as e:
            logger.error("sales_target_update_failed", user=owner, error=str(e))

    def _callback_for(self, lead: Lead, actor: Actor, scheduled_at: datetime) -> CallbackInfo:
        existing = lead.callback_info
        return CallbackInfo(
            scheduled_at=scheduled_at,
            scheduled_by=actor.name,
            created_at=existing.created_at if existing else self.clock(),
        )

    async def schedule_callback(self, actor: Actor, lead_id: str, scheduled_at: datetime) -> MutationOutcome:
        """Create the lead's callback, or move the existing one."""
        lead = await self.load(lead_id)
        decision = can_mutate(actor, lead, MutationKind.EDIT)
        if not decision.allowed:
            return self._deny(actor, lead, MutationKind.EDIT, decision.reason)

        info = self._callback_for(lead, actor, scheduled_at)
        updated = await self._commit(lead, MutationKind.EDIT, {"callback_info": info})
        return MutationOutcome(allowed=True, lead=updated, applied=True)

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def assignment_entry(self, actor: Actor, lead: Lead, new_assignee: Optional[str]) -> HistoryEntry:
        previous = UNASSIGNED_LABEL if is_unassigned(lead.assigned_to) else lead.assigned_to
        new = new_assignee or UNASSIGNED_LABEL
        return HistoryEntry(
            content=f"Assignment changed from {previous} to {new}",
            created_by=actor.name,
            created_by_id=actor.id,
            created_at=self.clock(),
            kind=HistoryKind.ASSIGNMENT,
            previous_assignee=previous,
            new_assignee=new,
        )

    def assign_updates(self, assignee: Actor) -> dict:
        return {"assigned_to": assignee.name, "assigned_to_id": assignee.id}

    @staticmethod
    def unassign_updates() -> dict:
        return {"assigned_to": "-", "assigned_to_id": None}

    async def assign(self, actor: Actor, lead_id: str, assignee: Optional[Actor] = None) -> MutationOutcome:
        """Give a lead to `assignee` (the actor when omitted)."""
        assignee = assignee or actor
        lead = await self.load(lead_id)
        decision = can_mutate(actor, lead, MutationKind.ASSIGN, assignee)
        if not decision.allowed:
            return self._deny(actor, lead, MutationKind.ASSIGN, decision.reason)

        updated = await self._commit(
            lead,
            MutationKind.ASSIGN,
            self.assign_updates(assignee),
            extra_fields={"assigned_to_id": assignee.id or ""},
            history=self.assignment_entry(actor, lead, assignee.name),
        )
        return MutationOutcome(allowed=True, lead=updated, applied=True)

    async def unassign(self, actor: Actor, lead_id: str) -> MutationOutcome:
        lead = await self.load(lead_id)
        decision = can_mutate(actor, lead, MutationKind.UNASSIGN)
        if not decision.allowed:
            return self._deny(actor, lead, MutationKind.UNASSIGN, decision.reason)

        updated = await self._commit(
            lead,
            MutationKind.UNASSIGN,
            self.unassign_updates(),
            extra_fields={"assigned_to_id": ""},
            history=self.assignment_entry(actor, lead, None),
        )
        return MutationOutcome(allowed=True, lead=updated, applied=True)

    async def history(self, lead_id: str) -> list:
        """History entries, newest first."""
        await self.store.get(lead_id)
        return await self.store.list_history(lead_id)
