from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from perkmatch_api.core.settings import settings
from perkmatch_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import TransactionMatchingWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    matching_worker = TransactionMatchingWorker(
        session_factory=_session_factory,
        batch_size=settings.matching_batch_size,
        confidence_threshold=settings.matching_confidence_threshold,
    )
    app.state.matching_worker = matching_worker

    if not settings.matching_worker_enabled:
        logger.info(
            "Transaction matching disabled",
            reason="matching_worker_enabled is false",
        )
    elif settings.celery_broker_url:
        logger.info(
            "Transaction matching Celery continuation enabled",
            queue=settings.matching_task_queue,
        )
    else:
        logger.info(
            "Transaction matching drain enabled (in-process)",
            batch_size=matching_worker.batch_size,
            max_batches=settings.matching_max_batches_per_drain,
        )
        matching_worker.start()

    try:
        yield
    finally:
        await matching_worker.stop()


def create_app() -> FastAPI:
    """Application factory for the perkmatch FastAPI service."""
    configure_logging(
        service_name="perkmatch-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Perkmatch API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="perkmatch-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
