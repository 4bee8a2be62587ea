"""
Query composition for the lead list.

Browse mode pushes as many filters as possible to the store and pages
with a stable sort on the ingestion timestamp. Search mode cannot be
expressed as store predicates, so it fans out prefix queries per field
plus a scan of the most recent leads, then ranks the merged candidates.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Optional

from leadsync.config import config
from leadsync.errors import SearchUnavailableError, StoreQueryError
from leadsync.logging_config import get_logger
from leadsync.models import Actor, FilterState, Lead, LeadPage, LeadView, SearchResult
from leadsync.authorization import UNASSIGNED_SENTINELS
from leadsync.pipelines import PipelineConfig, normalize_phone
from leadsync.store import LeadStore, Predicate, SortSpec, prefix_range

logger = get_logger(__name__)

# Filters the engine knows how to apply, in the order they are applied.
FILTER_ORDER = ("view", "source", "status", "assignee", "converted", "date_range")

SCORE_PREFIX = 3
SCORE_SUBSTRING = 2
SCORE_FALLBACK = 1


def date_range_millis(date_from: Optional[date], date_to: Optional[date]) -> tuple:
    """Inclusive epoch-millis bounds for a local calendar date range."""
    start = end = None
    if date_from:
        start = int(datetime.combine(date_from, time.min).timestamp() * 1000)
    if date_to:
        end = int(datetime.combine(date_to, time.max).timestamp() * 1000)
    return start, end


def active_filters(filter_state: FilterState) -> list:
    """Names of the filters `filter_state` turns on, in application order."""
    active = []
    if filter_state.view == LeadView.FOLLOW_UP:
        active.append("view")
    if filter_state.source:
        active.append("source")
    if filter_state.status:
        active.append("status")
    if filter_state.assignee or filter_state.unassigned_only or filter_state.my_leads:
        active.append("assignee")
    if filter_state.converted is not None:
        active.append("converted")
    if filter_state.date_from or filter_state.date_to:
        active.append("date_range")
    return active


@dataclass
class ComposedQuery:
    predicates: list
    sort: SortSpec
    client_filters: list = field(default_factory=list)


@dataclass
class _Candidate:
    lead: Lead
    score: int


class QueryComposer:
    """Builds store queries for one pipeline."""

    def __init__(self, pipeline: PipelineConfig, store: LeadStore):
        self.pipeline = pipeline
        self.store = store

    # ------------------------------------------------------------------
    # Browse mode
    # ------------------------------------------------------------------

    def build_query(self, filter_state: FilterState, actor: Actor) -> ComposedQuery:
        """Translate filters into AND-ed store predicates plus a stable sort."""
        f = self.pipeline.fields
        statuses = self.pipeline.statuses
        predicates = []
        client_filters = []

        if filter_state.view == LeadView.FOLLOW_UP:
            predicates.append(Predicate(f.status, "==", statuses.follow_up))

        if filter_state.source:
            values = self.pipeline.source_values(filter_state.source)
            if len(values) == 1:
                predicates.append(Predicate(f.source, "==", values[0]))
            else:
                predicates.append(Predicate(f.source, "in", list(values)))

        if filter_state.status:
            if filter_state.status == statuses.no_status:
                predicates.append(Predicate(f.status, "in", list(statuses.no_status_values)))
            else:
                predicates.append(Predicate(f.status, "==", filter_state.status))

        if filter_state.unassigned_only:
            predicates.append(Predicate(f.assigned_to, "in", list(UNASSIGNED_SENTINELS)))
        elif filter_state.my_leads:
            predicates.append(Predicate(f.assigned_to, "==", actor.name))
        elif filter_state.assignee:
            predicates.append(Predicate(f.assigned_to, "==", filter_state.assignee))

        if filter_state.converted is not None:
            predicates.append(Predicate(f.converted, "==", filter_state.converted))

        if filter_state.date_from or filter_state.date_to:
            if self.pipeline.server_side_date_range:
                start, end = date_range_millis(filter_state.date_from, filter_state.date_to)
                if start is not None:
                    predicates.append(Predicate(f.ingested_at, ">=", start))
                if end is not None:
                    predicates.append(Predicate(f.ingested_at, "<=", end))
            else:
                client_filters.append("date_range")

        return ComposedQuery(
            predicates=predicates,
            sort=SortSpec(f.ingested_at, descending=True),
            client_filters=client_filters,
        )

    async def fetch_page(
        self,
        filter_state: FilterState,
        actor: Actor,
        cursor: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> LeadPage:
        """
        Fetch one browse page.

        If the store rejects the composed predicates (e.g. a missing
        composite index) the page is re-fetched unfiltered and every active
        filter is handed to the filter engine instead.
        """
        composed = self.build_query(filter_state, actor)
        limit = page_size or config.LEADS_PER_PAGE
        try:
            result = await self.store.query(composed.predicates, composed.sort, cursor, limit)
            client_filters = composed.client_filters
        except StoreQueryError as e:
            logger.warning(
                "browse_query_degraded",
                pipeline=self.pipeline.name,
                predicates=len(composed.predicates),
                error=str(e),
            )
            result = await self.store.query([], composed.sort, cursor, limit)
            client_filters = active_filters(filter_state)

        leads = [self.pipeline.to_lead(doc.id, doc.data) for doc in result.items]
        logger.debug(
            "browse_page_fetched",
            pipeline=self.pipeline.name,
            count=len(leads),
            has_more=result.has_more,
        )
        return LeadPage(
            leads=leads,
            next_cursor=result.next_cursor,
            has_more=result.has_more,
            client_filters=client_filters,
        )

    # ------------------------------------------------------------------
    # Search mode
    # ------------------------------------------------------------------

    def _search_queries(self, term: str) -> list:
        """(field label, predicates) pairs to run for `term`."""
        f = self.pipeline.fields
        lowered = term.lower()
        digits = normalize_phone(term)
        queries = [("name", prefix_range(f.name, lowered))]
        if term != lowered:
            queries.append(("name", prefix_range(f.name, term)))
        if "@" in lowered or len(lowered) > 3:
            queries.append(("email", prefix_range(f.email, lowered)))
        if digits.isdigit():
            queries.append(("phone", prefix_range(f.phone, term)))
            if f.phone_normalized:
                queries.append(("phone_normalized", prefix_range(f.phone_normalized, digits)))
            if len(digits) >= config.SEARCH_MIN_PHONE_DIGITS:
                # Older leads store the phone as a number.
                queries.append(("phone", [Predicate(f.phone, "==", int(digits))]))
        return queries

    @staticmethod
    def score(lead: Lead, term: str) -> int:
        """Best per-field match strength of `lead` against `term` (0 = no match)."""
        lowered = term.lower()
        digits = normalize_phone(term)
        best = 0
        for value in (lead.name.lower(), lead.email.lower()):
            if value.startswith(lowered):
                best = max(best, SCORE_PREFIX)
            elif lowered in value:
                best = max(best, SCORE_SUBSTRING)
        phone = normalize_phone(lead.phone)
        if digits and phone:
            if phone.startswith(digits):
                best = max(best, SCORE_PREFIX)
            elif digits in phone:
                best = max(best, SCORE_SUBSTRING)
        return best

    @staticmethod
    def fallback_matches(lead: Lead, term: str) -> bool:
        lowered = term.lower()
        digits = normalize_phone(term)
        if lowered in lead.name.lower() or lowered in lead.email.lower():
            return True
        return len(digits) >= 4 and digits in normalize_phone(lead.phone)

    async def _run(self, label: str, predicates: list, sort=None, limit=None):
        try:
            result = await self.store.query(predicates, sort, None, limit)
        except StoreQueryError as e:
            logger.warning(
                "search_predicate_failed",
                pipeline=self.pipeline.name,
                field=label,
                error=str(e),
            )
            return label, None
        return label, result.items

    async def search(self, term: str) -> SearchResult:
        """
        Full-text search over name, email and phone.

        Failing field queries are skipped; SearchUnavailableError is raised
        only when every query failed.
        """
        term = term.strip()
        if not term:
            return SearchResult(leads=[])

        queries = self._search_queries(term)
        outcomes = await asyncio.gather(*[
            self._run(label, predicates, limit=config.SEARCH_PREFIX_LIMIT)
            for label, predicates in queries
        ])

        candidates: dict[str, _Candidate] = {}
        failed = []
        for label, items in outcomes:
            if items is None:
                failed.append(label)
                continue
            for doc in items:
                lead = self.pipeline.to_lead(doc.id, doc.data)
                self._merge(candidates, lead, self.score(lead, term))

        attempted = len(outcomes)
        if not candidates or len(term) <= config.SEARCH_FALLBACK_MAX_TERM_LENGTH:
            attempted += 1
            sort = SortSpec(self.pipeline.fields.ingested_at, descending=True)
            label, items = await self._run(
                "recent", [], sort=sort, limit=config.SEARCH_FALLBACK_SCAN_LIMIT
            )
            if items is None:
                failed.append(label)
            else:
                for doc in items:
                    lead = self.pipeline.to_lead(doc.id, doc.data)
                    if self.fallback_matches(lead, term):
                        self._merge(candidates, lead, SCORE_FALLBACK)

        if len(failed) == attempted:
            raise SearchUnavailableError(f"All {attempted} search queries failed for {self.pipeline.name}")

        ranked = sorted(
            candidates.values(),
            key=lambda c: (-c.score, -(c.lead.ingested_at or 0), c.lead.id),
        )
        leads = [c.lead for c in ranked[:config.SEARCH_RESULTS_LIMIT]]
        logger.info(
            "search_completed",
            pipeline=self.pipeline.name,
            term_length=len(term),
            results=len(leads),
            failed_fields=failed,
        )
        return SearchResult(leads=leads, failed_fields=sorted(set(failed)))

    @staticmethod
    def _merge(candidates: dict, lead: Lead, score: int):
        if score <= 0:
            return
        current = candidates.get(lead.id)
        if current is None or score > current.score:
            candidates[lead.id] = _Candidate(lead, score)
