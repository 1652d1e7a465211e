"""
Assembles the three contexts into one running service.

Cache -> ClientRequestQueue -> BackgroundOrchestrator -> WorkerLifecycleManager
-> worker host. The HTTP facade holds one ScannerService for the app lifetime.
"""

from pathlib import Path
from typing import Callable, Optional

import structlog
from redis.asyncio import Redis as AsyncRedis

from mailguard.channel.port import Port
from mailguard.client.queue import ClientRequestQueue
from mailguard.client.scanner import EmailScanner
from mailguard.config import Settings
from mailguard.llm.prompt_builder import PromptBuilder
from mailguard.orchestrator.hosts import EngineFactory, WorkerHost, build_host_factory
from mailguard.orchestrator.lifecycle import WorkerLifecycleManager
from mailguard.orchestrator.orchestrator import BackgroundOrchestrator
from mailguard.orchestrator.resources import ResourceSampler, sample_resources
from mailguard.persistence.cache import FingerprintCache
from mailguard.persistence.redis_client import RedisClient

logger = structlog.get_logger(__name__)


class ScannerService:
    """Owns the orchestrator, the client queue, and the cache for one process."""

    def __init__(
        self,
        settings: Settings,
        redis_client: Optional[AsyncRedis] = None,
        host_factory: Optional[Callable[[], WorkerHost]] = None,
        engine_factory: Optional[EngineFactory] = None,
        sampler: ResourceSampler = sample_resources,
    ):
        self.settings = settings
        self.lifecycle = WorkerLifecycleManager(
            host_factory=host_factory or build_host_factory(settings, engine_factory),
            settings=settings,
            sampler=sampler,
        )
        self.orchestrator = BackgroundOrchestrator(self.lifecycle, settings)
        self.prompt_builder = PromptBuilder(templates_dir=Path(settings.PROMPT_TEMPLATES_DIR))
        self.queue = ClientRequestQueue(self._connect, self.prompt_builder, settings)
        self.cache = FingerprintCache(redis_client or RedisClient.get_async_client(settings), settings)
        self.scanner = EmailScanner(self.queue, self.cache)

    async def _connect(self) -> Port:
        return self.orchestrator.connect()

    async def start(self) -> None:
        await self.orchestrator.start()
        logger.info("Scanner service started", worker_mode=self.settings.WORKER_MODE)

    async def stop(self) -> None:
        await self.queue.clear()
        await self.orchestrator.stop()
        logger.info("Scanner service stopped")
