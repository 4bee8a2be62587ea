from fastapi import Depends

from leadsync.services import PipelineServices, ServiceRegistry, get_registry


def get_services(pipeline: str, registry: ServiceRegistry = Depends(get_registry)) -> PipelineServices:
    """Engine services for the `{pipeline}` path parameter."""
    return registry.for_pipeline(pipeline)
