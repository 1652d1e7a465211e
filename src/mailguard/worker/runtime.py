"""
Worker-side control loop.

Serves the lifecycle manager's control messages over one port:

- initialize -> getSystemInfo round trip, sizing, load, then exactly one of
  modelLoaded / insufficientResources / modelLoadError
- inference -> inferenceResult (success with result, or failure with error kind)
- systemInfo -> resolves the pending getSystemInfo request

Long operations run as tasks so the loop keeps reading (the load itself
waits for a systemInfo reply on the same port).
"""

import asyncio
import secrets
from typing import Optional

import structlog
from pydantic import ValidationError

from mailguard.channel.exceptions import PortClosedError
from mailguard.channel.port import Port
from mailguard.llm.exceptions import EngineError, InsufficientResourcesError
from mailguard.models.control import (
    GetSystemInfoMessage,
    InferenceCommand,
    InferenceResultMessage,
    InitializeMessage,
    InsufficientResourcesMessage,
    ModelLoadedMessage,
    ModelLoadErrorMessage,
    ModelLoadProgressMessage,
    SystemInfoMessage,
    parse_control_message,
)
from mailguard.models.resources import ResourceSnapshot
from mailguard.worker.proxy import InferenceWorkerProxy

logger = structlog.get_logger(__name__)


class WorkerRuntime:
    """Control-message server wrapping an InferenceWorkerProxy."""

    def __init__(self, port: Port, proxy: InferenceWorkerProxy):
        self.port = port
        self.proxy = proxy
        self._tasks: set[asyncio.Task] = set()
        self._system_info: dict[str, asyncio.Future] = {}
        self._loading: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Serve until the port closes, then release the model."""
        logger.info("Worker runtime started", port=self.port.name)
        try:
            async for raw in self.port:
                try:
                    message = parse_control_message(raw)
                except ValidationError as e:
                    logger.warning("Ignoring invalid control message", error=str(e), raw_type=raw.get("type"))
                    continue
                self._dispatch(message)
        finally:
            for task in list(self._tasks):
                task.cancel()
            for future in self._system_info.values():
                future.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self.proxy.close()
            logger.info("Worker runtime stopped", port=self.port.name)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _dispatch(self, message) -> None:
        if isinstance(message, InitializeMessage):
            if self._loading is None or self._loading.done():
                self._loading = self._spawn(self._initialize())
            else:
                logger.debug("Initialize already in progress")
        elif isinstance(message, SystemInfoMessage):
            future = self._system_info.pop(message.correlation_id, None)
            if future is not None and not future.done():
                future.set_result(message.snapshot)
        elif isinstance(message, InferenceCommand):
            self._spawn(self._infer(message))
        else:
            logger.warning("Unexpected control message for worker", message_type=message.type)

    async def _send(self, message) -> None:
        try:
            await self.port.send(message.to_wire())
        except PortClosedError:
            logger.warning("Control port closed, dropping message", message_type=message.type)

    async def request_system_info(self) -> ResourceSnapshot:
        """Ask the orchestrator context for a fresh ResourceSnapshot."""
        correlation_id = secrets.token_hex(8)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._system_info[correlation_id] = future
        await self.port.send(GetSystemInfoMessage(correlation_id=correlation_id).to_wire())
        return await future

    def _progress_callback(self):
        loop = asyncio.get_running_loop()

        def report(percentage: int) -> None:
            message = ModelLoadProgressMessage(percentage=max(0, min(100, int(percentage))))
            loop.call_soon_threadsafe(self._spawn, self._send(message))

        return report

    async def _initialize(self) -> None:
        try:
            snapshot = await self.request_system_info()
            config = await self.proxy.load(snapshot, self._progress_callback())
        except InsufficientResourcesError as e:
            await self._send(
                InsufficientResourcesMessage(
                    required_memory=e.required_memory_mb,
                    available_memory=e.available_memory_mb,
                )
            )
            return
        except (EngineError, PortClosedError) as e:
            logger.error("Model load failed", error=e.message, error_type=type(e).__name__)
            await self._send(ModelLoadErrorMessage(error=e.message))
            return

        await self._send(ModelLoadedMessage(context_size=config.n_ctx, model_name=config.model_name))

    async def _infer(self, command: InferenceCommand) -> None:
        try:
            result = await self.proxy.infer(command.request)
        except EngineError as e:
            reply = InferenceResultMessage(
                correlation_id=command.correlation_id,
                success=False,
                error=e.message,
                error_kind=e.kind,
            )
        else:
            reply = InferenceResultMessage(
                correlation_id=command.correlation_id,
                success=True,
                result=result,
            )
        await self._send(reply)
