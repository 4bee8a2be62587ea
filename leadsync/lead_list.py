"""
Lead list session state.

A LeadListSession is what one operator has open: one pipeline, one set of
filters, and either a paginated browse list or a ranked search result.
The cached leads are held in immutable tuples that are replaced
wholesale on every change.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from leadsync.config import config
from leadsync.errors import StoreError
from leadsync.filter_engine import FilterSortEngine
from leadsync.logging_config import get_logger
from leadsync.models import Actor, FilterState, Lead, LeadView
from leadsync.pipelines import PipelineConfig
from leadsync.query_composer import QueryComposer
from leadsync.store import LeadStore

logger = get_logger(__name__)


class LeadCache:
    """Copy-on-write list of leads."""

    def __init__(self, leads: Iterable[Lead] = ()):
        self._leads = tuple(leads)

    @property
    def leads(self) -> tuple:
        return self._leads

    def __len__(self):
        return len(self._leads)

    def __iter__(self):
        return iter(self._leads)

    def __contains__(self, lead_id: str) -> bool:
        return self.get(lead_id) is not None

    def get(self, lead_id: str) -> Optional[Lead]:
        for lead in self._leads:
            if lead.id == lead_id:
                return lead
        return None

    def set_all(self, leads: Iterable[Lead]):
        self._leads = tuple(leads)

    def extend(self, leads: Iterable[Lead]):
        """Append leads not already cached (pages can overlap after writes)."""
        seen = {lead.id for lead in self._leads}
        fresh = [lead for lead in leads if lead.id not in seen]
        self._leads = self._leads + tuple(fresh)

    def replace(self, lead: Lead) -> Optional[Lead]:
        """Swap in a new version of a cached lead; returns the old one."""
        previous = self.get(lead.id)
        if previous is not None:
            self._leads = tuple(lead if item.id == lead.id else item for item in self._leads)
        return previous

    def patch(self, lead_id: str, **fields) -> Optional[Lead]:
        """Replace a cached lead with a copy carrying `fields`; returns the old one."""
        previous = self.get(lead_id)
        if previous is not None:
            self.replace(previous.model_copy(update=fields))
        return previous

    def clear(self):
        self._leads = ()


class Debouncer:
    """
    Single-slot delayed call.

    Each trigger cancels the pending call, so at most one is scheduled.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable], name: str = "debounced"):
        self.delay = delay
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self):
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self):
        if self.pending:
            self._task.cancel()
        self._task = None

    async def flush(self):
        """Run a pending call now instead of waiting out the delay."""
        if not self.pending:
            return
        self.cancel()
        await self.callback()

    async def wait(self):
        """Wait for the pending call, if any, to finish."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _run(self):
        await asyncio.sleep(self.delay)
        try:
            await self.callback()
        except Exception as e:
            logger.error("debounced_call_failed", name=self.name, error=str(e))


class ListMode(str, Enum):
    BROWSE = "browse"
    SEARCH = "search"


class LeadListSession:
    """One operator's view of one pipeline."""

    def __init__(
        self,
        pipeline: PipelineConfig,
        store: LeadStore,
        actor: Actor,
        composer: Optional[QueryComposer] = None,
        engine: Optional[FilterSortEngine] = None,
        page_size: Optional[int] = None,
    ):
        self.pipeline = pipeline
        self.store = store
        self.actor = actor
        self.composer = composer or QueryComposer(pipeline, store)
        self.engine = engine or FilterSortEngine(pipeline)
        self.page_size = page_size or config.LEADS_PER_PAGE

        self.filter_state = FilterState()
        self.mode = ListMode.BROWSE
        self.browse = LeadCache()
        self.results = LeadCache()
        self.cursor: Optional[str] = None
        self.has_more = False
        self.client_filters: list = []
        self.failed_search_fields: list = []
        self.load_failed = False
        self.loaded = False

        # Bumped on every reset so a slow response for stale filters is dropped.
        self._generation = 0
        self._filter_debouncer = Debouncer(
            config.FILTER_DEBOUNCE_SECONDS, self.load_first_page, name="filter_reload"
        )
        self._search_debouncer = Debouncer(
            config.SEARCH_DEBOUNCE_SECONDS, self.run_search, name="search"
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _reset_pagination(self):
        self._generation += 1
        self.cursor = None
        self.has_more = False

    async def load_first_page(self):
        """(Re)load page one of browse mode."""
        self._reset_pagination()
        generation = self._generation
        try:
            page = await self.composer.fetch_page(
                self.filter_state, self.actor, None, self.page_size
            )
        except StoreError as e:
            if not self.loaded:
                self.load_failed = True
            logger.error(
                "lead_list_load_failed",
                pipeline=self.pipeline.name,
                actor=self.actor.name,
                error=str(e),
            )
            raise
        if generation != self._generation:
            return
        self.browse.set_all(page.leads)
        self.cursor = page.next_cursor
        self.has_more = page.has_more
        self.client_filters = page.client_filters
        self.load_failed = False
        self.loaded = True

    async def load_more(self) -> int:
        """Append the next browse page; returns the number of new leads."""
        if self.mode == ListMode.SEARCH or not self.has_more:
            return 0
        generation = self._generation
        page = await self.composer.fetch_page(
            self.filter_state, self.actor, self.cursor, self.page_size
        )
        if generation != self._generation:
            return 0
        before = len(self.browse)
        self.browse.extend(page.leads)
        self.cursor = page.next_cursor
        self.has_more = page.has_more
        return len(self.browse) - before

    async def run_search(self):
        query = self.filter_state.query.strip()
        if not query:
            return
        generation = self._generation
        result = await self.composer.search(query)
        if generation != self._generation or self.filter_state.query.strip() != query:
            return
        self.results.set_all(result.leads)
        self.failed_search_fields = result.failed_fields

    # ------------------------------------------------------------------
    # Filter changes
    # ------------------------------------------------------------------

    def set_filters(self, **changes):
        """
        Change non-search filters.

        Browse mode drops its cursor and schedules a debounced reload;
        search mode only re-filters the current candidates.
        """
        changes.pop("query", None)
        self.filter_state = self.filter_state.model_copy(update=changes)
        if self.mode == ListMode.BROWSE:
            self._reset_pagination()
            self._filter_debouncer.trigger()

    async def set_search_query(self, query: str):
        """
        Enter, update or leave search mode.

        Clearing the query returns to page one of browse mode; the browse
        cursor is never resumed.
        """
        self.filter_state = self.filter_state.model_copy(update={"query": query})
        if query.strip():
            if self.mode == ListMode.BROWSE:
                self._filter_debouncer.cancel()
                self._reset_pagination()
                self.mode = ListMode.SEARCH
            self._search_debouncer.trigger()
            return

        self._search_debouncer.cancel()
        self.results.clear()
        self.failed_search_fields = []
        self.mode = ListMode.BROWSE
        await self.load_first_page()

    async def settle(self):
        """Run any pending debounced work now."""
        await self._filter_debouncer.flush()
        await self._search_debouncer.flush()

    def close(self):
        self._filter_debouncer.cancel()
        self._search_debouncer.cancel()

    # ------------------------------------------------------------------
    # Cache access for mutations
    # ------------------------------------------------------------------

    def get(self, lead_id: str) -> Optional[Lead]:
        return self.browse.get(lead_id) or self.results.get(lead_id)

    def replace(self, lead: Lead) -> Optional[Lead]:
        previous_browse = self.browse.replace(lead)
        previous_results = self.results.replace(lead)
        return previous_browse or previous_results

    def patch(self, lead_id: str, **fields) -> Optional[Lead]:
        previous_browse = self.browse.patch(lead_id, **fields)
        previous_results = self.results.patch(lead_id, **fields)
        return previous_browse or previous_results

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def visible(self, now: Optional[datetime] = None) -> list:
        """The filtered, ordered list the operator sees."""
        if self.mode == ListMode.SEARCH:
            state = self.filter_state
            if state.sort_key is None and state.view == LeadView.ALL:
                # Keep relevance order.
                return self.engine.filter(self.results, state, self.actor)
            return self.engine.apply(self.results, state, self.actor, now)
        return self.engine.apply(
            self.browse, self.filter_state, self.actor, now, self.client_filters
        )
