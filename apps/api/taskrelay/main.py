import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .core.config import settings
from .db.session import check_db_health, create_schema
from .dependencies import Services, build_services, get_sweeper
from .errors import NotFoundError, TaskValidationError
from .jobs.sweep import AssignmentSweeper
from .middleware.correlation import CorrelationIDFilter, CorrelationIDMiddleware
from .middleware.error_handler import (
    database_exception_handler,
    generic_exception_handler,
    not_found_handler,
    task_validation_handler,
    validation_exception_handler,
)
from .middleware.metrics import MetricsMiddleware, get_metrics
from .middleware.rate_limit import RateLimiter, rate_limiter as default_rate_limiter
from .routers import agents, tasks, ws

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s",
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(CorrelationIDFilter())


def create_app(
    services: Optional[Services] = None,
    rate_limiter: Optional[RateLimiter] = None,
    background: bool = True,
) -> FastAPI:
    """
    Build the API application.

    Args:
        services: Pre-built services (tests pass their own); built from settings otherwise
        rate_limiter: Limiter for /api routes
        background: Seed agents and run the sweep on startup
    """
    app = FastAPI(
        title="TaskRelay API",
        description="Delegates submitted tasks to specialized agents and tracks their progress",
        version="0.1.0",
        default_response_class=ORJSONResponse,
    )
    app.state.services = services or build_services()
    limiter = rate_limiter or default_rate_limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIDMiddleware)
    app.middleware("http")(MetricsMiddleware())

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        try:
            await limiter.check(request)
        except HTTPException as e:
            return ORJSONResponse(status_code=e.status_code, content=e.detail)
        return await call_next(request)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(TaskValidationError, task_validation_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(tasks.router)
    app.include_router(agents.router)
    app.include_router(ws.router)

    @app.on_event("startup")
    async def startup_event():
        """Validate configuration, prepare the registry and start the sweep."""
        logger.info("Starting TaskRelay API...")
        settings.validate_production_config()

        if not background:
            return

        svc: Services = app.state.services
        if settings.DATABASE_URL.startswith("sqlite"):
            await create_schema()
        if settings.SEED_AGENTS:
            await svc.registry.seed()
        if settings.SWEEP_ENABLED:
            svc.sweeper.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down TaskRelay API...")
        app.state.services.sweeper.stop()

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        svc: Services = app.state.services
        db_ok, latency_ms, error = await check_db_health()
        agents_count = len(await svc.registry.list()) if db_ok else 0
        return {
            "status": "ok" if db_ok else "degraded",
            "env": settings.TASKRELAY_ENV,
            "database": {"ok": db_ok, "latency_ms": round(latency_ms, 2), "error": error},
            "agents": agents_count,
            "subscribers": svc.events.subscriber_count,
        }

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return get_metrics()

    @app.get("/admin/jobs")
    async def get_jobs(sweeper: AssignmentSweeper = Depends(get_sweeper)):
        """Status of the scheduled sweep."""
        return {"jobs": sweeper.get_job_status()}

    @app.get("/admin/providers")
    async def get_providers():
        """Configured reasoning providers."""
        from .llm_providers import list_available_providers, validate_provider_config

        current = validate_provider_config(settings.MODEL_PROVIDER)
        return {
            "current_provider": settings.MODEL_PROVIDER,
            "current_model": settings.MODEL_NAME,
            "current_valid": current["valid"],
            "current_missing": current["missing"],
            "providers": list_available_providers(),
        }

    return app


def _build_default_app() -> FastAPI:
    configure_logging()
    return create_app()


app = _build_default_app()
