"""
FastAPI facade over the scanner service.

- routes.py: POST /scan, DELETE /cache, POST /worker/prewarm, GET /health
- dependencies.py: settings and running-service injection
- models.py: API-specific response models
- middleware.py: request tracing
- error_handlers.py: exception handlers for structured error responses
"""

from mailguard.api import dependencies, error_handlers, models
from mailguard.api.routes import router

__all__ = [
    "router",
    "dependencies",
    "error_handlers",
    "models",
]
