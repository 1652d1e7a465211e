"""
FastAPI exception handlers for structured error responses.

Analysis failures never reach these handlers: they travel as error-shaped
scan responses. Only infrastructure failures around the scan do.
"""

from datetime import datetime, timezone

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from mailguard.channel.exceptions import ChannelError
from mailguard.orchestrator.exceptions import OrchestratorError

logger = structlog.get_logger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def service_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle channel and orchestrator errors.

    Maps to 503 Service Unavailable (the scan pipeline is not reachable).
    """
    logger.warning(
        "Scan pipeline unavailable",
        error_type=type(exc).__name__,
        details=getattr(exc, "details", {}),
    )

    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": "service_unavailable",
            "message": getattr(exc, "message", str(exc)),
            "details": getattr(exc, "details", {}),
            "timestamp": _timestamp(),
        },
    )


async def cache_error_handler(request: Request, exc: RedisError) -> JSONResponse:
    """
    Handle fingerprint cache errors that escape the cache layer (clear-all).

    Maps to 502 Bad Gateway (cache backend unavailable).
    """
    logger.error("Cache backend error", error=str(exc))

    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={
            "error": "cache_unavailable",
            "message": "Fingerprint cache backend is unavailable",
            "timestamp": _timestamp(),
        },
    )


async def pydantic_validation_error_handler(
    request: Request, exc: PydanticValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors (invalid request format).

    Maps to 400 Bad Request (client error).
    """
    logger.warning("Invalid request format", errors=exc.errors())

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "invalid_request",
            "message": "Request validation failed",
            "details": exc.errors(include_url=False),
            "timestamp": _timestamp(),
        },
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected errors.

    Maps to 500 Internal Server Error.
    """
    logger.exception("Unexpected error", error_type=type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "timestamp": _timestamp(),
        },
    )


# Exception handler mapping for FastAPI app.add_exception_handler()
EXCEPTION_HANDLERS = {
    ChannelError: service_unavailable_handler,
    OrchestratorError: service_unavailable_handler,
    RedisError: cache_error_handler,
    PydanticValidationError: pydantic_validation_error_handler,
    Exception: generic_error_handler,
}
