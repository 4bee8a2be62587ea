from fastapi import APIRouter, Depends

from leadsync import __version__
from leadsync.models import MessageTemplate
from leadsync.pipelines import PIPELINES
from leadsync.security import verify_api_key
from leadsync.services import PipelineServices
from leadsync.routers.deps import get_services

router = APIRouter(tags=["Core"])


# GET /
# Gets: nothing
# Returns: basic API metadata and a map of key endpoints
# Example:
#   curl http://localhost:8000/
@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "LeadSync API - lead list synchronization and bulk actions",
        "version": __version__,
        "description": "Browse, search, annotate, assign and bulk-message sales leads across pipelines",
        "endpoints": {
            "pipelines": "/pipelines",
            "leads": "/pipelines/{pipeline}/leads",
            "search": "/pipelines/{pipeline}/leads/search?q=",
            "history": "/pipelines/{pipeline}/leads/{lead_id}/history",
            "bulk": "/pipelines/{pipeline}/bulk",
            "templates": "/pipelines/{pipeline}/templates",
            "health": "/health",
            "metrics": "/metrics",
        },
        "pipelines": sorted(PIPELINES),
    }


# GET /pipelines
# Gets: nothing
# Returns: JSON array of pipeline summaries (name, collection, statuses)
# Example:
#   curl http://localhost:8000/pipelines
@router.get("/pipelines", dependencies=[Depends(verify_api_key)])
async def list_pipelines():
    """List configured lead pipelines."""
    return [
        {
            "name": p.name,
            "collection": p.collection,
            "channel_name": p.channel_name,
            "statuses": list(p.statuses.options),
            "follow_up_status": p.statuses.follow_up,
            "sources": sorted(p.source_aliases),
        }
        for p in PIPELINES.values()
    ]


# GET /pipelines/{pipeline}/templates
# Gets: path param pipeline
# Returns: JSON array of MessageTemplate objects
# Example:
#   curl http://localhost:8000/pipelines/ama/templates
@router.get(
    "/pipelines/{pipeline}/templates",
    response_model=list[MessageTemplate],
    dependencies=[Depends(verify_api_key)],
)
async def list_templates(services: PipelineServices = Depends(get_services)):
    """Message templates available for bulk sends in this pipeline."""
    return list(services.pipeline.templates)
