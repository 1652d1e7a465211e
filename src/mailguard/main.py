"""
FastAPI application entry point for the mail threat scanner.
"""

import structlog
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from mailguard.api.error_handlers import EXCEPTION_HANDLERS
from mailguard.api.middleware import RequestTracingMiddleware
from mailguard.api.routes import router
from mailguard.config import settings
from mailguard.logging_config import configure_logging
from mailguard.persistence.redis_client import RedisClient
from mailguard.service import ScannerService

# Configure structured logging before the app and its routes log anything
configure_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)
logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Mail Threat Scanner",
    description="On-device email threat classification with a locally run language model",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Request tracing middleware (must be first for trace_id in all logs)
app.add_middleware(RequestTracingMiddleware)

for exc_class, handler in EXCEPTION_HANDLERS.items():
    app.add_exception_handler(exc_class, handler)

app.include_router(router, tags=["scan"])


@app.on_event("startup")
async def startup():
    """Start the orchestrator. The worker itself is created on first scan or prewarm."""
    logger.info(
        "Application startup",
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        worker_mode=settings.WORKER_MODE,
        models_dir=settings.MODELS_DIR,
    )
    app.state.service = ScannerService(settings)
    await app.state.service.start()
    logger.info("Application startup complete")


@app.on_event("shutdown")
async def shutdown():
    """Tear down queue, orchestrator, worker, and the Redis pool."""
    logger.info("Application shutdown")
    service = getattr(app.state, "service", None)
    if service is not None:
        await service.stop()
    await RedisClient.close_async_pool()
    logger.info("Application shutdown complete")


if settings.PROMETHEUS_ENABLED:
    Instrumentator().instrument(app).expose(app)


@app.get("/")
async def root():
    """Root endpoint with API documentation links."""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics" if settings.PROMETHEUS_ENABLED else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mailguard.main:app",
        host="127.0.0.1",
        port=8000,
    )
