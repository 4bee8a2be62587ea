"""
Bulk operations.

A batch applies one action (assign, unassign, send a template message) to
many leads. Authorization is checked for every target before anything is
touched. Each item then moves through PENDING -> COMMITTED or
PENDING -> ROLLED_BACK: the cache is patched optimistically up front and
restored for items whose store write or send failed.

Chunks of `chunk_size` items run concurrently; the next chunk starts only
after every item of the previous one has settled.

Message sends are not idempotent and are not deduplicated: re-running a
send batch sends again.
"""

import asyncio
import inspect
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from leadsync.authorization import MutationKind, can_bulk_mutate
from leadsync.config import config
from leadsync.errors import BatchStateError, InvalidBatchError, LeadNotFoundError, StoreError
from leadsync.logging_config import get_logger
from leadsync.metrics import bulk_items_total, bulk_jobs_total
from leadsync.models import Actor, BatchAction, BatchRequest, BatchSummary, Lead
from leadsync.mutations import LeadMutationService
from leadsync.notifier import Notifier, format_destination
from leadsync.pipelines import PipelineConfig
from leadsync.store import LeadStore

logger = get_logger(__name__)

REASON_NOT_FOUND = "lead not found"
REASON_NO_PHONE = "no valid phone number"

_ACTION_KINDS = {
    BatchAction.ASSIGN: MutationKind.ASSIGN,
    BatchAction.UNASSIGN: MutationKind.UNASSIGN,
    BatchAction.SEND_MESSAGE: MutationKind.SEND_MESSAGE,
}


class ItemState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS = {
    ItemState.PENDING: (ItemState.COMMITTED, ItemState.ROLLED_BACK),
}


@dataclass
class BatchItem:
    """One lead's progress through a batch."""
    lead_id: str
    lead: Optional[Lead] = None
    # Cached value before the optimistic patch, restored on rollback.
    original: Optional[Lead] = None
    state: ItemState = ItemState.PENDING
    reason: Optional[str] = None
    attempts: int = 0
    # The document write landed; a retry only needs the history append.
    written: bool = False

    def _move(self, target: ItemState):
        if target not in _TRANSITIONS.get(self.state, ()):
            raise BatchStateError(f"Lead {self.lead_id}: cannot move from {self.state.value} to {target.value}")
        self.state = target

    def commit(self):
        self._move(ItemState.COMMITTED)

    def roll_back(self, reason: str):
        self._move(ItemState.ROLLED_BACK)
        self.reason = reason


class ItemFailed(Exception):
    """Raised inside a batch step to fail one item with a readable reason."""


def progress_percent(settled: int, total: int) -> float:
    if total == 0:
        return 100.0
    return min(settled / total * 100, 100.0)


async def _report(progress: Optional[Callable[[float], Any]], percent: float):
    if progress is None:
        return
    maybe = progress(percent)
    if inspect.isawaitable(maybe):
        await maybe


class BatchOperationEngine:
    """Runs bulk actions for one pipeline."""

    def __init__(
        self,
        pipeline: PipelineConfig,
        store: LeadStore,
        notifier: Notifier,
        cache=None,
        chunk_size: Optional[int] = None,
        chunk_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.pipeline = pipeline
        self.store = store
        self.notifier = notifier
        self.cache = cache
        self.chunk_size = chunk_size or config.BATCH_CHUNK_SIZE
        self.chunk_delay = config.BATCH_CHUNK_DELAY_SECONDS if chunk_delay is None else chunk_delay
        self.max_retries = config.BATCH_MAX_RETRIES if max_retries is None else max_retries
        self.clock = clock
        self.mutations = LeadMutationService(pipeline, store, clock=clock)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, request: BatchRequest) -> list:
        """Deduplicated target ids, in request order."""
        lead_ids = list(dict.fromkeys(i for i in request.lead_ids if i))
        if not lead_ids:
            raise InvalidBatchError("A batch needs at least one lead id")
        if request.action == BatchAction.ASSIGN and not (request.assignee_name or "").strip():
            raise InvalidBatchError("Assign batches need an assignee")
        if request.action == BatchAction.SEND_MESSAGE:
            if not request.template_id:
                raise InvalidBatchError("Message batches need a template")
            if self.pipeline.find_template(request.template_id) is None:
                raise InvalidBatchError(
                    f"Unknown template '{request.template_id}' for pipeline {self.pipeline.name}"
                )
        return lead_ids

    async def _load(self, lead_id: str) -> BatchItem:
        doc = await self.store.get(lead_id)
        return BatchItem(lead_id, lead=self.pipeline.to_lead(doc.id, doc.data))

    # ------------------------------------------------------------------
    # Per-item steps
    # ------------------------------------------------------------------

    def _optimistic_updates(self, request: BatchRequest, assignee: Optional[Actor]) -> Optional[dict]:
        if request.action == BatchAction.ASSIGN:
            return self.mutations.assign_updates(assignee)
        if request.action == BatchAction.UNASSIGN:
            return self.mutations.unassign_updates()
        return None

    async def _apply(self, actor: Actor, item: BatchItem, request: BatchRequest, assignee: Optional[Actor]):
        lead = item.lead
        if request.action == BatchAction.SEND_MESSAGE:
            destination = format_destination(lead.phone)
            if destination is None:
                raise ItemFailed(REASON_NO_PHONE)
            parameters = [
                lead.name or "Customer",
                self.pipeline.channel_name,
                actor.name,
                destination,
            ]
            result = await self.notifier.send(destination, request.template_id, parameters)
            if not result.success:
                raise ItemFailed(result.reason or "failed to send")
            return

        if request.action == BatchAction.ASSIGN:
            updates = self.mutations.assign_updates(assignee)
            entry = self.mutations.assignment_entry(actor, lead, assignee.name)
            extra = {"assigned_to_id": assignee.id or ""}
        else:
            updates = self.mutations.unassign_updates()
            entry = self.mutations.assignment_entry(actor, lead, None)
            extra = {"assigned_to_id": ""}

        if not item.written:
            document = self.pipeline.to_document({**updates, "last_modified": self.clock(), **extra})
            await self.store.write(lead.id, document)
            item.written = True
        await self.store.append_history(lead.id, entry)

    async def _execute(self, actor: Actor, item: BatchItem, request: BatchRequest, assignee: Optional[Actor]):
        """Run one item, retrying up to max_retries; settles the item either way."""
        last_error = None
        while item.attempts <= self.max_retries:
            item.attempts += 1
            try:
                await self._apply(actor, item, request, assignee)
            except ItemFailed as e:
                # Not transient; retrying would not change the outcome.
                last_error = str(e)
                break
            except (StoreError, OSError) as e:
                last_error = str(e)
                continue
            item.commit()
            return
        self._roll_back(item, last_error or "unknown error")

    def _roll_back(self, item: BatchItem, reason: str):
        if item.written:
            # The document changed; only its history entry is missing.
            item.roll_back(f"change saved but history not recorded: {reason}")
            return
        if self.cache is not None and item.original is not None:
            self.cache.replace(item.original)
        item.roll_back(reason)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        actor: Actor,
        request: BatchRequest,
        progress: Optional[Callable[[float], Any]] = None,
        job_id: Optional[str] = None,
    ) -> BatchSummary:
        """
        Execute one batch and return its summary.

        `progress` is called (or awaited) with the percentage complete after
        each chunk settles.
        """
        lead_ids = self.validate(request)
        job_id = job_id or uuid.uuid4().hex[:12]
        kind = _ACTION_KINDS[request.action]
        assignee = None
        if request.action == BatchAction.ASSIGN:
            assignee = Actor(
                name=request.assignee_name.strip(),
                role=actor.role,
                id=request.assignee_id,
            )

        with structlog.contextvars.bound_contextvars(
            job_id=job_id, pipeline=self.pipeline.name, action=request.action.value
        ):
            logger.info("batch_started", total=len(lead_ids), actor=actor.name)

            loaded = await asyncio.gather(
                *[self._load(lead_id) for lead_id in lead_ids], return_exceptions=True
            )
            items = []
            for lead_id, outcome in zip(lead_ids, loaded):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, (StoreError, OSError)):
                        raise outcome
                    item = BatchItem(lead_id)
                    item.roll_back(REASON_NOT_FOUND if isinstance(outcome, LeadNotFoundError) else str(outcome))
                    items.append(item)
                else:
                    items.append(outcome)

            live = [item for item in items if item.state == ItemState.PENDING]
            decision = can_bulk_mutate(actor, [item.lead for item in live], kind, assignee)
            if not decision.allowed:
                logger.warning("batch_rejected", reason=decision.reason, denied=len(decision.denied_ids))
                bulk_jobs_total.labels(
                    pipeline=self.pipeline.name, action=request.action.value, outcome="rejected"
                ).inc()
                return BatchSummary(
                    job_id=job_id,
                    action=request.action,
                    total=len(lead_ids),
                    allowed=False,
                    reason=decision.reason,
                    denied_ids=list(decision.denied_ids),
                )

            updates = self._optimistic_updates(request, assignee)
            if updates is not None and self.cache is not None:
                for item in live:
                    item.original = self.cache.patch(item.lead_id, **updates)

            settled = len(items) - len(live)
            for start in range(0, len(live), self.chunk_size):
                chunk = live[start:start + self.chunk_size]
                results = await asyncio.gather(
                    *[self._execute(actor, item, request, assignee) for item in chunk],
                    return_exceptions=True,
                )
                for item, result in zip(chunk, results):
                    if isinstance(result, BaseException) and item.state == ItemState.PENDING:
                        logger.error("batch_item_crashed", lead_id=item.lead_id, error=str(result))
                        self._roll_back(item, str(result) or type(result).__name__)

                settled += len(chunk)
                percent = progress_percent(settled, len(items))
                logger.info("batch_chunk_settled", progress=round(percent, 1))
                await _report(progress, percent)
                if start + self.chunk_size < len(live) and self.chunk_delay > 0:
                    await asyncio.sleep(self.chunk_delay)

            if not live:
                # Every target failed to load; nothing ran but the batch is done.
                await _report(progress, 100.0)

            summary = self._summarize(job_id, request.action, items)
            for item in items:
                bulk_items_total.labels(
                    pipeline=self.pipeline.name,
                    action=request.action.value,
                    outcome="succeeded" if item.state == ItemState.COMMITTED else "failed",
                ).inc()
            bulk_jobs_total.labels(
                pipeline=self.pipeline.name, action=request.action.value, outcome="completed"
            ).inc()
            logger.info("batch_completed", succeeded=summary.succeeded, failed=summary.failed)
            return summary

    @staticmethod
    def _summarize(job_id: str, action: BatchAction, items: list) -> BatchSummary:
        failed = [item for item in items if item.state == ItemState.ROLLED_BACK]
        return BatchSummary(
            job_id=job_id,
            action=action,
            total=len(items),
            succeeded=sum(1 for item in items if item.state == ItemState.COMMITTED),
            failed=len(failed),
            reasons=[f"{item.lead_id}: {item.reason}" for item in failed],
            rolled_back=[item.lead_id for item in failed if item.original is not None and not item.written],
        )
