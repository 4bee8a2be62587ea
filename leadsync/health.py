"""
Health check and monitoring endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from leadsync import __version__
from leadsync.config import config
from leadsync.logging_config import logger
from leadsync.pipelines import PIPELINES

router = APIRouter(tags=["Health & Monitoring"])


# GET /health
# Gets: nothing
# Returns: {status, service, version}
# Example:
#   curl http://localhost:8000/health
@router.get("/health")
async def health_check():
    """
    Basic health check - returns 200 if service is running.
    Use this for basic liveness probes.
    """
    return {
        "status": "healthy",
        "service": "leadsync",
        "version": __version__
    }


# GET /health/ready
# Gets: nothing
# Returns: dependency readiness checks; 503 if the lead store is unusable
# Example:
#   curl http://localhost:8000/health/ready
@router.get("/health/ready")
async def readiness_check():
    """
    Readiness check - verifies the lead store is reachable.
    Use this for Kubernetes readiness probes.

    Checks:
    - Database connectivity (when LEAD_STORE_BACKEND=sql)
    - Twilio configuration (informational)
    """
    checks = {
        "lead_store": config.LEAD_STORE_BACKEND,
        "database": "not_used",
        "twilio": config.has_twilio_config() or "not_configured",
        "ready": False
    }

    if config.use_sql_store():
        try:
            from leadsync.database import engine

            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = True
            logger.debug("readiness_check_database", status="ok")
        except Exception as e:
            checks["database"] = False
            logger.warning("readiness_check_database", status="error", error=str(e))

    checks["ready"] = checks["database"] is not False

    status_code = 200 if checks["ready"] else 503
    return JSONResponse(content=checks, status_code=status_code)


# GET /health/info
# Gets: nothing
# Returns: service configuration summary
# Example:
#   curl http://localhost:8000/health/info
@router.get("/health/info")
async def system_info():
    """
    System information and configuration status.
    """
    return {
        "service": "leadsync",
        "version": __version__,
        "configuration": {
            "lead_store_backend": config.LEAD_STORE_BACKEND,
            "leads_per_page": config.LEADS_PER_PAGE,
            "batch_chunk_size": config.BATCH_CHUNK_SIZE,
            "batch_max_retries": config.BATCH_MAX_RETRIES,
            "debug_mode": config.DEBUG
        },
        "pipelines": sorted(PIPELINES),
        "features": {
            "whatsapp_messaging": config.has_twilio_config(),
            "database_persistence": config.use_sql_store(),
            "background_jobs": config.use_sql_store(),
        }
    }
