"""Main FastAPI application."""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import time

from leadsync import __version__
from leadsync.config import config
from leadsync.errors import (
    InvalidBatchError,
    LeadNotFoundError,
    LeadWriteError,
    SearchUnavailableError,
    StoreError,
    UnknownPipelineError,
)
from leadsync.logging_config import logger
from leadsync.metrics import api_request_duration, api_requests_total


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    # Startup
    logger.info("application_starting", version=__version__)
    if config.use_sql_store():
        from leadsync.database import init_db

        init_db()  # Initialize database
        logger.info("database_initialized")
    logger.info("lead_store_backend", backend=config.LEAD_STORE_BACKEND)
    logger.info("twilio_configured", configured=config.has_twilio_config())

    yield

    # Shutdown
    logger.info("application_shutting_down")


app = FastAPI(
    title="LeadSync API",
    description="Lead list synchronization, authorization and bulk actions",
    version=__version__,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    api_request_duration.observe(time.perf_counter() - start)
    api_requests_total.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    return response


# Engine errors -> HTTP
def _error(status_code: int, detail):
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.exception_handler(UnknownPipelineError)
async def unknown_pipeline_handler(request: Request, exc: UnknownPipelineError):
    return _error(404, str(exc))


@app.exception_handler(LeadNotFoundError)
async def lead_not_found_handler(request: Request, exc: LeadNotFoundError):
    return _error(404, str(exc))


@app.exception_handler(InvalidBatchError)
async def invalid_batch_handler(request: Request, exc: InvalidBatchError):
    return _error(422, str(exc))


@app.exception_handler(LeadWriteError)
async def lead_write_handler(request: Request, exc: LeadWriteError):
    return _error(502, str(exc))


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("lead_store_unavailable", path=request.url.path, error=str(exc))
    return _error(502, "Lead store unavailable")


@app.exception_handler(SearchUnavailableError)
async def search_unavailable_handler(request: Request, exc: SearchUnavailableError):
    return _error(503, str(exc))


# Include routers
from leadsync.health import router as health_router
from leadsync.routers.core import router as core_router
from leadsync.routers.leads import router as leads_router
from leadsync.routers.bulk import router as bulk_router

app.include_router(health_router)
app.include_router(core_router)
app.include_router(leads_router)
app.include_router(bulk_router)


# GET /metrics
# Gets: nothing
# Returns: Prometheus text exposition of request, mutation and bulk counters
# Example:
#   curl http://localhost:8000/metrics
@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
