"""
Client-side filtering and sorting of the lead list.

Runs over whatever the list currently holds (a browse page or search
candidates) and applies the filters the store did not. Applying a filter
that the store already applied is a no-op, so `apply` is idempotent.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional

from leadsync.authorization import is_unassigned
from leadsync.callback_priority import sort_key as callback_sort_key
from leadsync.models import Actor, FilterState, Lead, LeadView, SortDirection
from leadsync.pipelines import PipelineConfig
from leadsync.query_composer import FILTER_ORDER, active_filters, date_range_millis

DEFAULT_SORT_KEY = "ingested_at"

_TEXT_KEYS = ("name", "email", "phone", "source", "status", "assigned_to", "query", "note")
_TIME_KEYS = ("last_modified", "converted_at")


def _text(lead: Lead, key: str) -> Optional[str]:
    value = getattr(lead, key)
    if value is None or not str(value).strip():
        return None
    if key == "assigned_to" and is_unassigned(value):
        return None
    return str(value).strip().casefold()


def _sort_value(lead: Lead, key: str):
    """Comparable value for `key`, or None when the lead has no value."""
    if key in _TEXT_KEYS:
        return _text(lead, key)
    if key == "ingested_at":
        return lead.ingested_at
    if key in _TIME_KEYS:
        value = getattr(lead, key)
        return value.timestamp() if value else None
    if key == "callback":
        info = lead.callback_info
        return info.scheduled_at.timestamp() if info else None
    raise ValueError(f"Unsupported sort key: {key}")


SORT_KEYS = _TEXT_KEYS + ("ingested_at", "callback") + _TIME_KEYS


class FilterSortEngine:
    """Produces the ordered, filtered view for one pipeline."""

    def __init__(self, pipeline: PipelineConfig):
        self.pipeline = pipeline

    def predicate(self, name: str, filter_state: FilterState, actor: Actor) -> Callable[[Lead], bool]:
        """Pure predicate for one named filter."""
        statuses = self.pipeline.statuses

        if name == "view":
            return lambda lead: lead.status == statuses.follow_up

        if name == "source":
            values = set(self.pipeline.source_values(filter_state.source))
            return lambda lead: lead.source in values

        if name == "status":
            wanted = statuses.normalize(filter_state.status)
            return lambda lead: statuses.normalize(lead.status) == wanted

        if name == "assignee":
            if filter_state.unassigned_only:
                return lambda lead: is_unassigned(lead.assigned_to)
            owner = (actor.name if filter_state.my_leads else filter_state.assignee).strip()
            return lambda lead: not is_unassigned(lead.assigned_to) and lead.assigned_to.strip() == owner

        if name == "converted":
            return lambda lead: lead.converted == filter_state.converted

        if name == "date_range":
            start, end = date_range_millis(filter_state.date_from, filter_state.date_to)

            def in_range(lead: Lead) -> bool:
                if lead.ingested_at is None:
                    return False
                if start is not None and lead.ingested_at < start:
                    return False
                if end is not None and lead.ingested_at > end:
                    return False
                return True
            return in_range

        raise ValueError(f"Unknown filter: {name}")

    def filter(
        self,
        leads: Iterable[Lead],
        filter_state: FilterState,
        actor: Actor,
        client_filters: Optional[Iterable[str]] = None,
    ) -> list:
        """
        Apply filters in FILTER_ORDER.

        `client_filters` limits which filters run (those the store skipped);
        None applies every active filter, as search mode needs.
        """
        active = active_filters(filter_state)
        if client_filters is not None:
            wanted = set(client_filters)
            active = [name for name in active if name in wanted]

        result = list(leads)
        for name in FILTER_ORDER:
            if name in active:
                keep = self.predicate(name, filter_state, actor)
                result = [lead for lead in result if keep(lead)]
        return result

    @staticmethod
    def sort(leads: Iterable[Lead], key: str, direction: SortDirection) -> list:
        """
        Sort on one key, tie-broken by id.

        Leads missing the key go last ascending and first descending.
        """
        descending = direction == SortDirection.DESCENDING

        def sort_tuple(lead: Lead):
            value = _sort_value(lead, key)
            if value is None:
                return (1, 0, "", lead.id)
            if isinstance(value, str):
                return (0, 0, value, lead.id)
            return (0, value, "", lead.id)

        return sorted(leads, key=sort_tuple, reverse=descending)

    def apply(
        self,
        leads: Iterable[Lead],
        filter_state: FilterState,
        actor: Actor,
        now: Optional[datetime] = None,
        client_filters: Optional[Iterable[str]] = None,
    ) -> list:
        """Filter, then sort; the follow-up view orders by callback priority."""
        result = self.filter(leads, filter_state, actor, client_filters)

        if filter_state.view == LeadView.FOLLOW_UP:
            if filter_state.sort_key:
                result = self.sort(result, filter_state.sort_key, filter_state.sort_direction)
            now = now or datetime.now().astimezone()
            return sorted(result, key=lambda lead: callback_sort_key(lead, now))

        key = filter_state.sort_key or DEFAULT_SORT_KEY
        return self.sort(result, key, filter_state.sort_direction)
