"""
API-specific request and response models for FastAPI endpoints.

Scan requests reuse the EmailContent domain model directly; these models
cover the operational endpoints.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: str = Field(
        description="Overall health status",
        examples=["healthy", "degraded", "unhealthy"],
    )
    version: str = Field(description="Service version", examples=["0.1.0"])
    worker_state: str = Field(description="Current WorkerState", examples=["unloaded", "ready"])
    context_size: Optional[int] = Field(default=None, description="Effective context window when ready")
    queue_depth: int = Field(ge=0, description="Requests admitted but not yet forwarded")
    connections: int = Field(ge=0, description="Open client connections")
    services: dict[str, str] = Field(
        description="Dependency status",
        examples=[{"cache": "ok", "orchestrator": "ok"}],
    )
    timestamp: datetime = Field(default_factory=_utcnow)


class CacheClearResponse(BaseModel):
    """Response for cache clear endpoint."""

    removed: int = Field(ge=0, description="Number of cache entries deleted")


class PrewarmResponse(BaseModel):
    """Response for worker prewarm endpoint."""

    worker_state: str = Field(description="WorkerState after the prewarm request")


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str = Field(
        description="Error code or type",
        examples=["invalid_request", "service_unavailable", "internal_error"],
    )
    message: str = Field(description="Human-readable error message")
    details: Optional[dict] = Field(default=None, description="Additional error details")
    timestamp: datetime = Field(default_factory=_utcnow)
