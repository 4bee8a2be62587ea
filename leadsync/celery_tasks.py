"""
Async job processing with Celery.
For long bulk actions (large WhatsApp sends in particular).
"""

from celery import Celery
from leadsync.config import config

# Initialize Celery with Redis broker
celery_app = Celery(
    'leadsync',
    broker=config.REDIS_URL,
    backend=config.REDIS_URL
)

# Celery configuration
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes
    worker_prefetch_multiplier=1,
)


@celery_app.task(name='run_bulk_action', bind=True)
def run_bulk_action_task(self, pipeline_name: str, actor: dict, request: dict, job_id: str = None):
    """
    Background task to run one bulk action.

    Args:
        pipeline_name: Pipeline the leads belong to
        actor: Serialized Actor performing the action
        request: Serialized BatchRequest
        job_id: Job id reported back to the caller when the task was queued

    Returns:
        dict: BatchSummary, or {"status": "error", ...} if the job could not run
    """
    import asyncio
    from leadsync.errors import LeadSyncError
    from leadsync.logging_config import logger
    from leadsync.models import Actor, BatchRequest
    from leadsync.services import ServiceRegistry

    def report_progress(percent: float):
        self.update_state(state='PROGRESS', meta={'job_id': job_id, 'progress': round(percent, 1)})

    try:
        services = ServiceRegistry().for_pipeline(pipeline_name)
        summary = asyncio.run(services.batch.run(
            Actor.model_validate(actor),
            BatchRequest.model_validate(request),
            progress=report_progress,
            job_id=job_id,
        ))
    except LeadSyncError as e:
        logger.error("bulk_job_failed", pipeline=pipeline_name, job_id=job_id, error=str(e))
        return {"status": "error", "job_id": job_id, "message": str(e)}

    return summary.model_dump(mode="json")
