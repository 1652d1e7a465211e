"""
Fingerprint cache backed by Redis.

Storage Strategy:
- One string key per fingerprint: "{CACHE_KEY_PREFIX}{fingerprint}" -> AnalysisResult JSON
- Written with SET NX: the first successful classification wins and is never overwritten
- No TTL and no partial invalidation; clear() removes every entry under the prefix

Failures are non-fatal: a failed read is a miss, a failed write is logged and
reported as False so the caller still delivers its response.
"""

from typing import Optional

import structlog
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from mailguard.config import Settings
from mailguard.models.messages import AnalysisResult
from mailguard.monitoring.metrics import cache_lookups_total, cache_write_failures_total

logger = structlog.get_logger(__name__)


class FingerprintCache:
    """
    Persistent key-value store of analysis results keyed by content fingerprint.
    """

    CLEAR_BATCH_SIZE = 500

    def __init__(self, redis_client: AsyncRedis, settings: Settings):
        """
        Initialize cache.

        Args:
            redis_client: AsyncRedis client instance
            settings: Application settings
        """
        self.redis = redis_client
        self.key_prefix = settings.CACHE_KEY_PREFIX

    def _key(self, fingerprint: str) -> str:
        return f"{self.key_prefix}{fingerprint}"

    async def get(self, fingerprint: str) -> Optional[AnalysisResult]:
        """
        Retrieve the stored result for a fingerprint.

        Args:
            fingerprint: Content fingerprint

        Returns:
            AnalysisResult if found, None if absent or unreadable
        """
        try:
            raw = await self.redis.get(self._key(fingerprint))
        except RedisError as e:
            cache_lookups_total.labels(result="error").inc()
            logger.error("Failed to read cache entry", fingerprint=fingerprint, error=str(e))
            return None

        if raw is None:
            cache_lookups_total.labels(result="miss").inc()
            return None

        try:
            result = AnalysisResult.model_validate_json(raw)
        except ValueError as e:
            cache_lookups_total.labels(result="error").inc()
            logger.error("Corrupt cache entry ignored", fingerprint=fingerprint, error=str(e))
            return None

        cache_lookups_total.labels(result="hit").inc()
        logger.debug("Cache hit", fingerprint=fingerprint)
        return result

    async def put(self, fingerprint: str, result: AnalysisResult) -> bool:
        """
        Store a result for a fingerprint, idempotently.

        An existing entry is left untouched (entries are immutable once written).

        Args:
            fingerprint: Content fingerprint
            result: Classification to store

        Returns:
            True if the entry exists after the call, False on storage failure
        """
        try:
            created = await self.redis.set(self._key(fingerprint), result.model_dump_json(), nx=True)
        except RedisError as e:
            cache_write_failures_total.inc()
            logger.error(
                "Failed to store cache entry",
                fingerprint=fingerprint,
                error=str(e),
                exc_info=True,
            )
            return False

        logger.info(
            "Stored cache entry" if created else "Cache entry already present",
            fingerprint=fingerprint,
            threat_type=result.type.value,
        )
        return True

    async def clear(self) -> int:
        """
        Remove every cache entry.

        Returns:
            Number of entries removed
        """
        removed = 0
        batch: list[str] = []
        async for key in self.redis.scan_iter(match=f"{self.key_prefix}*", count=self.CLEAR_BATCH_SIZE):
            batch.append(key)
            if len(batch) >= self.CLEAR_BATCH_SIZE:
                removed += await self.redis.delete(*batch)
                batch = []
        if batch:
            removed += await self.redis.delete(*batch)

        logger.info("Cleared fingerprint cache", removed=removed)
        return removed

    async def ping(self) -> bool:
        """Check that Redis is reachable. Never raises."""
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            logger.warning("Cache health check failed", error=str(e))
            return False
