"""
Worker hosts: create and destroy the ephemeral inference context.

- SubprocessWorkerHost: ``python -m mailguard.worker`` child process, control
  messages as JSON lines over its stdin/stdout
- InProcessWorkerHost: the same WorkerRuntime as an asyncio task behind a
  MemoryPort pair (tests and single-process deployments)

A host is single-use: the lifecycle manager builds a fresh one per creation.
"""

import asyncio
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

import structlog

from mailguard.channel.port import MemoryPort, Port, StreamPort
from mailguard.config import Settings
from mailguard.llm.base_engine import EngineFactory, load_engine_factory
from mailguard.llm.prompt_builder import PromptBuilder
from mailguard.orchestrator.exceptions import WorkerStartError
from mailguard.worker.proxy import InferenceWorkerProxy
from mailguard.worker.runtime import WorkerRuntime

logger = structlog.get_logger(__name__)

STREAM_LIMIT = 16 * 1024 * 1024


class WorkerHost(ABC):
    """One worker context. start() returns the orchestrator end of its control port."""

    @abstractmethod
    async def start(self) -> Port:
        """
        Create the worker context.

        Raises:
            WorkerStartError: The context could not be created
        """

    @abstractmethod
    async def stop(self) -> None:
        """Destroy the worker context and release its memory. Idempotent."""


class SubprocessWorkerHost(WorkerHost):
    """Worker in a child Python process."""

    def __init__(self, stop_timeout: float = 10.0):
        self.stop_timeout = stop_timeout
        self._process: Optional[asyncio.subprocess.Process] = None
        self._port: Optional[StreamPort] = None

    async def start(self) -> Port:
        try:
            self._process = await asyncio.create_subprocess_exec(
                sys.executable,
                "-m",
                "mailguard.worker",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise WorkerStartError(
                f"Failed to spawn worker process: {e}",
                details={"error_type": type(e).__name__},
            ) from e

        logger.info("Spawned worker process", pid=self._process.pid)
        self._port = StreamPort(f"worker-{self._process.pid}", self._process.stdout, self._process.stdin)
        return self._port

    async def stop(self) -> None:
        process, port = self._process, self._port
        self._process = self._port = None
        if port is not None:
            # Closing stdin lets the worker exit on its own
            await port.close()
        if process is None or process.returncode is not None:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Worker did not exit in time, killing", pid=process.pid)
            process.kill()
            await process.wait()
        logger.info("Worker process exited", pid=process.pid, returncode=process.returncode)


class InProcessWorkerHost(WorkerHost):
    """Worker runtime as a task in the current event loop."""

    def __init__(self, engine_factory: EngineFactory, settings: Settings):
        self.engine_factory = engine_factory
        self.settings = settings
        self._task: Optional[asyncio.Task] = None
        self._worker_port: Optional[MemoryPort] = None

    async def start(self) -> Port:
        try:
            engine = self.engine_factory()
            prompt_builder = PromptBuilder(templates_dir=Path(self.settings.PROMPT_TEMPLATES_DIR))
        except Exception as e:
            raise WorkerStartError(
                f"Failed to build in-process worker: {e}",
                details={"error_type": type(e).__name__},
            ) from e

        proxy = InferenceWorkerProxy(
            engine=engine,
            system_prompt=prompt_builder.build_system_prompt(),
            settings=self.settings,
        )
        orchestrator_end, worker_end = MemoryPort.pair("worker-inprocess")
        self._worker_port = worker_end
        self._task = asyncio.create_task(WorkerRuntime(worker_end, proxy).run())
        logger.info("Started in-process worker")
        return orchestrator_end

    async def stop(self) -> None:
        task, port = self._task, self._worker_port
        self._task = self._worker_port = None
        if port is not None:
            await port.close()
        if task is not None:
            # Runtime exits on its own once the port closes
            await asyncio.gather(task, return_exceptions=True)


def build_host_factory(
    settings: Settings,
    engine_factory: Optional[EngineFactory] = None,
) -> Callable[[], WorkerHost]:
    """Return a factory producing a fresh host per worker creation, per WORKER_MODE."""
    if settings.WORKER_MODE == "inprocess":
        factory = engine_factory or (lambda: load_engine_factory(settings.WORKER_ENGINE)())
        return lambda: InProcessWorkerHost(factory, settings)
    return SubprocessWorkerHost
