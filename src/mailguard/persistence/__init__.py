"""
Redis persistence layer.

- redis_client.py: Shared async Redis connection pool
- cache.py: FingerprintCache (get/put/clear by content fingerprint)

Storage Strategy:
- Results stored as JSON strings, one key per fingerprint, no TTL
- SET NX keeps the first written result for a fingerprint
- clear() removes all entries under the configured prefix
"""

from mailguard.persistence.cache import FingerprintCache
from mailguard.persistence.redis_client import RedisClient

__all__ = [
    "RedisClient",
    "FingerprintCache",
]
