"""
FastAPI dependency injection for the scanner service.

The ScannerService is created at startup (it owns asyncio tasks, so it
cannot be built at import time) and stored on app.state.
"""

from functools import lru_cache

from fastapi import Request

from mailguard.client.scanner import EmailScanner
from mailguard.config import Settings, settings
from mailguard.service import ScannerService


@lru_cache()
def get_settings() -> Settings:
    """
    Get settings singleton.

    Returns:
        Settings instance
    """
    return settings


def get_service(request: Request) -> ScannerService:
    """
    Get the running ScannerService.

    Args:
        request: FastAPI request (carries the app)

    Returns:
        ScannerService created at startup
    """
    return request.app.state.service


def get_scanner(request: Request) -> EmailScanner:
    """Get the cache-first email scanner of the running service."""
    return get_service(request).scanner
