import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from leadsync.config import config
from leadsync.logging_config import get_logger
from leadsync.models import Actor, BatchRequest, BulkRequest
from leadsync.routers.deps import get_services
from leadsync.security import get_actor, verify_api_key
from leadsync.services import PipelineServices

logger = get_logger(__name__)

router = APIRouter(
    prefix="/pipelines/{pipeline}",
    tags=["Bulk"],
    dependencies=[Depends(verify_api_key)],
)


# POST /pipelines/{pipeline}/bulk
# Gets: JSON body {action, lead_ids, assignee_name?, assignee_id?, template_id?, background}
#       action is one of assign | unassign | send_message
# Returns: BatchSummary {job_id, total, succeeded, failed, reasons, rolled_back};
#          403 {reason, denied_ids} if any lead may not be touched;
#          202 {status: queued, job_id, task_id} when background=true
# Example:
#   curl -X POST -H 'Content-Type: application/json' \
#        -H 'X-Actor-Name: Admin' -H 'X-Actor-Role: admin' \
#        -d '{"action": "send_message", "lead_ids": ["a1", "a2"], "template_id": "ama_dashboard_no_answer"}' \
#        http://localhost:8000/pipelines/ama/bulk
@router.post("/bulk")
async def run_bulk_action(
    body: BulkRequest,
    actor: Actor = Depends(get_actor),
    services: PipelineServices = Depends(get_services),
):
    """Apply one action to many leads."""
    request = BatchRequest(**body.model_dump(exclude={"background"}))

    if body.background:
        if not config.use_sql_store():
            raise HTTPException(
                status_code=422,
                detail="Background jobs need LEAD_STORE_BACKEND=sql so the worker sees the same leads",
            )
        services.batch.validate(request)
        from leadsync.celery_tasks import run_bulk_action_task

        job_id = uuid.uuid4().hex[:12]
        task = run_bulk_action_task.delay(
            services.pipeline.name,
            actor.model_dump(mode="json"),
            request.model_dump(mode="json"),
            job_id,
        )
        logger.info("bulk_job_queued", pipeline=services.pipeline.name, job_id=job_id, task_id=task.id)
        return JSONResponse(
            status_code=202,
            content={"status": "queued", "job_id": job_id, "task_id": task.id},
        )

    summary = await services.batch.run(actor, request)
    if not summary.allowed:
        raise HTTPException(
            status_code=403,
            detail={"reason": summary.reason, "denied_ids": summary.denied_ids},
        )
    return summary
