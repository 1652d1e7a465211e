"""
Observer-side scan flow.

fingerprint -> cache lookup -> (miss) queue submission -> cache store.
Scans of the same fingerprint that overlap share one submission, so
identical emails cost one engine invocation.
"""

import asyncio
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from mailguard.client.queue import ClientRequestQueue
from mailguard.models.email import EmailContent
from mailguard.models.messages import ResponseMessage
from mailguard.persistence.cache import FingerprintCache

logger = structlog.get_logger(__name__)


class ScanOutcome(BaseModel):
    """Result of scanning one email."""

    fingerprint: str = Field(..., description="Content fingerprint of the email")
    cached: bool = Field(..., description="True when served from the fingerprint cache")
    response: ResponseMessage


class EmailScanner:
    """Cache-first front end over a ClientRequestQueue."""

    def __init__(self, queue: ClientRequestQueue, cache: FingerprintCache):
        self.queue = queue
        self.cache = cache
        self._inflight: dict[str, asyncio.Future] = {}
        queue.add_abandon_listener(self._forget_abandoned)

    async def scan(self, email: EmailContent) -> ScanOutcome:
        """
        Classify one email, from cache when possible.

        Only completions are stored; synthesized "unknown" and error
        responses are returned but never cached.
        """
        fingerprint = email.fingerprint()

        cached = await self.cache.get(fingerprint)
        if cached is not None:
            logger.info("Scan served from cache", fingerprint=fingerprint, threat_type=cached.type.value)
            return ScanOutcome(
                fingerprint=fingerprint,
                cached=True,
                response=ResponseMessage.completion(fingerprint, cached),
            )

        shared = self._inflight.get(fingerprint)
        if shared is not None:
            logger.debug("Joining in-flight scan", fingerprint=fingerprint)
            response = await asyncio.shield(shared)
            return ScanOutcome(fingerprint=fingerprint, cached=False, response=response)

        future = self.queue.submit(email)
        self._inflight[fingerprint] = future
        try:
            response = await asyncio.shield(future)
        finally:
            if self._inflight.get(fingerprint) is future:
                del self._inflight[fingerprint]

        if response.is_completion:
            stored = await self.cache.put(fingerprint, response.to_result())
            if not stored:
                logger.warning("Result not cached, delivering anyway", fingerprint=fingerprint)

        logger.info(
            "Scan completed",
            fingerprint=fingerprint,
            response_type=response.response_type.value,
            threat_type=response.type.value,
        )
        return ScanOutcome(fingerprint=fingerprint, cached=False, response=response)

    def _forget_abandoned(self, request_id: str, fingerprint: Optional[str]) -> None:
        # Waiters on the abandoned request stay pending; later scans submit afresh
        if fingerprint is not None and self._inflight.pop(fingerprint, None) is not None:
            logger.info("Dropped abandoned in-flight scan", fingerprint=fingerprint, request_id=request_id)

    async def clear_cache(self) -> int:
        """Clear every cached result and tear down the request queue."""
        removed = await self.cache.clear()
        await self.queue.clear()
        self._inflight.clear()
        return removed
