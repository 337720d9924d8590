import logging

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from .core.config import settings
from .db.session import init_models
from .gateway.providers import list_available_providers, validate_provider_config
from .jobs.cleanup import get_job_status, start_background_jobs, stop_background_jobs
from .middleware.error_handler import generic_exception_handler, validation_exception_handler
from .middleware.metrics import MetricsMiddleware, get_metrics
from .models import OrchestrationRequest, OrchestratorResult
from .progress import LoggingProgressSink, ProgressReporter
from .utils.background import background_tasks
from .workflows.pipeline import OrchestrationEngine, get_engine

logger = logging.getLogger(__name__)


app = FastAPI(
    title="CodeCrew API",
    description="Multi-agent code generation orchestrator",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.middleware("http")(MetricsMiddleware())

app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    logger.info("Starting CodeCrew API...")
    settings.validate_production_config()

    await init_models()
    start_background_jobs()


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down CodeCrew API...")
    stop_background_jobs()

    cancelled = await background_tasks.drain(settings.SHUTDOWN_DRAIN_SECONDS)
    if cancelled:
        logger.warning(f"{cancelled} background tasks did not finish before shutdown")

    cache = get_engine().cache
    disconnect = getattr(cache.persistent, "disconnect", None) if cache else None
    if disconnect is not None:
        await disconnect()


@app.get("/health", response_class=ORJSONResponse)
async def health(engine: OrchestrationEngine = Depends(get_engine)):
    """Health check endpoint."""
    health_data = {
        "status": "ok",
        "env": settings.CODECREW_ENV,
        "pending_background_tasks": background_tasks.pending,
    }
    if engine.cache is not None:
        health_data["cache"] = engine.cache.get_stats()
    return health_data


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics()


@app.post("/orchestrate", response_model=OrchestratorResult)
async def orchestrate(
    request: OrchestrationRequest,
    engine: OrchestrationEngine = Depends(get_engine),
) -> OrchestratorResult:
    """Run the generation pipeline for a build request."""
    return await engine.orchestrate(request, progress=ProgressReporter(LoggingProgressSink()))


@app.get("/admin/jobs", response_class=ORJSONResponse)
async def get_jobs():
    """Get status of background jobs."""
    return {"jobs": get_job_status()}


@app.get("/admin/providers", response_class=ORJSONResponse)
async def get_providers(engine: OrchestrationEngine = Depends(get_engine)):
    """Configuration and routing health of the inference providers."""
    current = settings.MODEL_PROVIDER
    health = getattr(engine.gateway, "get_health_status", None)
    return {
        "current": current,
        "current_valid": validate_provider_config(current)["valid"],
        "providers": list_available_providers(),
        "health": health() if health is not None else {},
    }
