"""
Service layer wiring.

Builds the per-pipeline engine objects (store, composer, filter engine,
mutation service, batch engine) from configuration. The API and the
Celery worker both go through a ServiceRegistry.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from leadsync.batch import BatchOperationEngine
from leadsync.config import config
from leadsync.filter_engine import FilterSortEngine
from leadsync.logging_config import get_logger
from leadsync.mutations import LeadMutationService
from leadsync.notifier import Notifier, build_notifier
from leadsync.pipelines import PipelineConfig, get_pipeline
from leadsync.query_composer import QueryComposer
from leadsync.store import InMemoryLeadStore, InMemoryTargetsLedger, LeadStore, TargetsLedger

logger = get_logger(__name__)


def build_store(pipeline: PipelineConfig) -> LeadStore:
    """Lead store for `pipeline` according to LEAD_STORE_BACKEND."""
    if config.use_sql_store():
        from leadsync.db_store import SqlLeadStore

        return SqlLeadStore(pipeline.collection)
    return InMemoryLeadStore(pipeline.collection)


def build_targets() -> TargetsLedger:
    if config.use_sql_store():
        from leadsync.db_store import SqlTargetsLedger

        return SqlTargetsLedger()
    return InMemoryTargetsLedger()


@dataclass
class PipelineServices:
    pipeline: PipelineConfig
    store: LeadStore
    composer: QueryComposer
    engine: FilterSortEngine
    mutations: LeadMutationService
    batch: BatchOperationEngine


class ServiceRegistry:
    """Lazily builds and caches one PipelineServices per pipeline."""

    def __init__(
        self,
        store_factory: Callable[[PipelineConfig], LeadStore] = build_store,
        targets: Optional[TargetsLedger] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.store_factory = store_factory
        self._targets = targets
        self._notifier = notifier
        self._services: dict[str, PipelineServices] = {}

    @property
    def targets(self) -> TargetsLedger:
        if self._targets is None:
            self._targets = build_targets()
        return self._targets

    @property
    def notifier(self) -> Notifier:
        if self._notifier is None:
            self._notifier = build_notifier()
        return self._notifier

    def for_pipeline(self, name: str) -> PipelineServices:
        """Services for pipeline `name`; raises UnknownPipelineError."""
        pipeline = get_pipeline(name)
        services = self._services.get(pipeline.name)
        if services is None:
            store = self.store_factory(pipeline)
            services = PipelineServices(
                pipeline=pipeline,
                store=store,
                composer=QueryComposer(pipeline, store),
                engine=FilterSortEngine(pipeline),
                mutations=LeadMutationService(pipeline, store, targets=self.targets),
                batch=BatchOperationEngine(pipeline, store, self.notifier),
            )
            self._services[pipeline.name] = services
            logger.info("pipeline_services_built", pipeline=pipeline.name, store=type(store).__name__)
        return services

    def reset(self):
        self._services.clear()


registry = ServiceRegistry()


def get_registry() -> ServiceRegistry:
    """FastAPI dependency; tests override it with a fresh registry."""
    return registry
