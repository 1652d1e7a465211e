"""
HTTP routes for the mail threat scanner.

The observer (a mail client plugin or any local caller) posts extracted
email fields; everything behind this facade runs on the same machine.
"""

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from mailguard.api.dependencies import get_scanner, get_service, get_settings
from mailguard.api.models import CacheClearResponse, HealthResponse, PrewarmResponse
from mailguard.client.scanner import EmailScanner, ScanOutcome
from mailguard.config import Settings
from mailguard.models.email import EmailContent
from mailguard.service import ScannerService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/scan",
    response_model=ScanOutcome,
    status_code=status.HTTP_200_OK,
    summary="Classify one email",
    description="""
    Classify one email for security threats.

    Served from the fingerprint cache when the same normalized content was
    classified before. Otherwise queued behind any in-flight analysis.
    Failures are reported inside the response (responseType="error"), not
    as HTTP errors.
    """,
)
async def scan_email(
    email: EmailContent,
    scanner: EmailScanner = Depends(get_scanner),
) -> ScanOutcome:
    return await scanner.scan(email)


@router.delete(
    "/cache",
    response_model=CacheClearResponse,
    summary="Clear every cached classification",
)
async def clear_cache(scanner: EmailScanner = Depends(get_scanner)) -> CacheClearResponse:
    removed = await scanner.clear_cache()
    logger.info("Cache cleared via API", removed=removed)
    return CacheClearResponse(removed=removed)


@router.post(
    "/worker/prewarm",
    response_model=PrewarmResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start loading the model ahead of the first scan",
)
async def prewarm_worker(service: ScannerService = Depends(get_service)) -> PrewarmResponse:
    service.lifecycle.prewarm()
    return PrewarmResponse(worker_state=service.lifecycle.state.value)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    responses={
        200: {"description": "Healthy or degraded"},
        503: {"description": "Orchestrator not running"},
    },
)
async def health_check(
    service: ScannerService = Depends(get_service),
    settings: Settings = Depends(get_settings),
):
    services = {
        "orchestrator": "ok" if service.orchestrator.running else "stopped",
        "cache": "ok" if await service.cache.ping() else "unreachable",
    }

    if services["orchestrator"] != "ok":
        health_status, status_code = "unhealthy", status.HTTP_503_SERVICE_UNAVAILABLE
    elif services["cache"] != "ok":
        # Scans still work without the cache, they just repeat inference
        health_status, status_code = "degraded", status.HTTP_200_OK
    else:
        health_status, status_code = "healthy", status.HTTP_200_OK

    response = HealthResponse(
        status=health_status,
        version=settings.APP_VERSION,
        worker_state=service.lifecycle.state.value,
        context_size=service.lifecycle.context_size,
        queue_depth=service.orchestrator.queue_depth,
        connections=service.orchestrator.connection_count,
        services=services,
    )
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))
