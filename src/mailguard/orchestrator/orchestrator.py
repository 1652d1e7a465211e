"""
Background Orchestrator.

Accepts analysis requests from any number of client connections and feeds
them, one at a time, to the inference worker:

1. Admission: each valid request is appended to one FIFO tagged with its
   connection, and any pending idle teardown is cancelled.
2. Scheduling loop: pulls the head only when nothing is in flight. While the
   worker reports insufficient resources, answers immediately with an
   "unknown" response; otherwise waits for the worker to become Ready,
   forwards the request, and delivers the result to its connection.
3. On queue-empty, arms the idle teardown.

The loop task is the only code that touches the worker. Every admitted
request gets exactly one terminal response; no failure stops the loop.
"""

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from mailguard.channel.port import MemoryPort, Port
from mailguard.config import Settings
from mailguard.models.enums import RequestType, ThreatType, WorkerState
from mailguard.models.messages import RequestMessage, ResponseMessage
from mailguard.monitoring.metrics import orchestrator_queue_depth, orchestrator_responses_total
from mailguard.orchestrator.connection import Connection
from mailguard.orchestrator.exceptions import OrchestratorError, WorkerUnavailableError
from mailguard.orchestrator.lifecycle import WorkerLifecycleManager

logger = structlog.get_logger(__name__)

INSUFFICIENT_RESOURCES_ANALYSIS = "Cannot process request due to insufficient system resources"


@dataclass
class AdmittedRequest:
    """A request in the admission FIFO, tagged with where its response goes."""

    connection: Connection
    request: RequestMessage
    admitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def request_id(self) -> str:
        return self.request.request_id


class BackgroundOrchestrator:
    """
    Single-flight scheduler between client connections and the worker.

    Usage:
        orchestrator = BackgroundOrchestrator(lifecycle, settings)
        await orchestrator.start()
        port = orchestrator.connect()   # client end of a new channel
        ...
        await orchestrator.stop()
    """

    def __init__(self, lifecycle: WorkerLifecycleManager, settings: Settings):
        self.lifecycle = lifecycle
        self.settings = settings

        self._queue: deque[AdmittedRequest] = deque()
        self._wakeup = asyncio.Event()
        self._in_flight: Optional[AdmittedRequest] = None
        self._connections: dict[str, Connection] = {}
        self._reader_tasks: set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        lifecycle.on_ready = self._worker_ready

    # === Introspection ===

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    @property
    def in_flight(self) -> Optional[str]:
        return self._in_flight.request_id if self._in_flight else None

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # === Lifecycle ===

    async def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run())
        logger.info("Orchestrator started")

    async def stop(self) -> None:
        """Stop reading connections and scheduling, then tear the worker down."""
        tasks = list(self._reader_tasks)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None

        for connection in list(self._connections.values()):
            await connection.close()
        self._connections.clear()

        if self._queue:
            logger.warning("Orchestrator stopped with queued requests", dropped=len(self._queue))
        self._queue.clear()
        orchestrator_queue_depth.set(0)

        await self.lifecycle.stop()
        logger.info("Orchestrator stopped")

    # === Connections ===

    def connect(self) -> Port:
        """Open an in-process channel and return its client end."""
        connection_id = f"client-{next(self._ids)}"
        client_end, server_end = MemoryPort.pair(connection_id)
        self._accept(connection_id, server_end)
        return client_end

    def accept(self, port: Port) -> Connection:
        """Register an externally created port as a client connection."""
        return self._accept(f"client-{next(self._ids)}", port)

    def _accept(self, connection_id: str, port: Port) -> Connection:
        connection = Connection(connection_id, port)
        self._connections[connection_id] = connection
        task = asyncio.create_task(self._read_connection(connection))
        self._reader_tasks.add(task)
        task.add_done_callback(self._reader_tasks.discard)
        logger.info("Client connected", connection_id=connection_id, connections=len(self._connections))
        return connection

    async def _read_connection(self, connection: Connection) -> None:
        try:
            async for raw in connection.port:
                await self._admit(connection, raw)
        finally:
            self._connections.pop(connection.connection_id, None)
            if connection.outstanding:
                # Responses for these will be dropped on delivery
                logger.warning(
                    "Client disconnected with outstanding requests",
                    connection_id=connection.connection_id,
                    outstanding=sorted(connection.outstanding),
                )
            else:
                logger.info("Client disconnected", connection_id=connection.connection_id)

    # === Admission ===

    async def _admit(self, connection: Connection, raw: dict[str, Any]) -> None:
        try:
            request = RequestMessage.model_validate(raw)
        except ValidationError as e:
            request_id = raw.get("requestId")
            logger.warning(
                "Rejected invalid request",
                connection_id=connection.connection_id,
                request_id=request_id,
                error_count=e.error_count(),
            )
            if isinstance(request_id, str) and request_id:
                await connection.deliver(ResponseMessage.failure(request_id, "Invalid request message"))
            return

        if request.request_type is RequestType.CANCEL:
            logger.info(
                "Cancel requests are not supported, ignoring",
                connection_id=connection.connection_id,
                request_id=request.request_id,
            )
            return

        self.lifecycle.cancel_idle_teardown()
        connection.track(request.request_id)
        self._queue.append(AdmittedRequest(connection=connection, request=request))
        orchestrator_queue_depth.set(len(self._queue))
        logger.debug(
            "Request admitted",
            connection_id=connection.connection_id,
            request_id=request.request_id,
            queue_depth=len(self._queue),
        )
        self._wakeup.set()

    # === Scheduling loop ===

    def _worker_ready(self) -> None:
        # A worker loaded with nothing admitted (prewarm) still idles out
        if not self._queue and self._in_flight is None:
            self.lifecycle.arm_idle_teardown()

    async def _run(self) -> None:
        while True:
            if not self._queue:
                self.lifecycle.arm_idle_teardown()
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            item = self._queue.popleft()
            orchestrator_queue_depth.set(len(self._queue))
            self._in_flight = item
            try:
                response, outcome = await self._process(item)
                delivered = await item.connection.deliver(response)
                orchestrator_responses_total.labels(outcome=outcome if delivered else "dropped").inc()
            finally:
                self._in_flight = None

    async def _process(self, item: AdmittedRequest) -> tuple[ResponseMessage, str]:
        """Produce the terminal response for one admitted request. Never raises."""
        self.lifecycle.cancel_idle_teardown()
        log = logger.bind(request_id=item.request_id, connection_id=item.connection.connection_id)

        try:
            if not await self._ensure_worker_ready():
                log.info("Answering without worker: insufficient resources")
                return self._insufficient_response(item.request_id), "insufficient_resources"

            result = await self.lifecycle.infer(item.request)
        except WorkerUnavailableError as e:
            log.error("Worker unavailable", error=e.message)
            return ResponseMessage.failure(item.request_id, e.message), "load_error"
        except OrchestratorError as e:
            log.error("Inference failed", error=e.message, error_type=type(e).__name__)
            return ResponseMessage.failure(item.request_id, e.message), "engine_error"
        except Exception as e:
            log.exception("Unexpected error while processing request")
            return ResponseMessage.failure(item.request_id, str(e) or type(e).__name__), "engine_error"

        if not result.success or result.result is None:
            log.warning("Worker reported inference failure", error=result.error, error_kind=result.error_kind)
            analysis = f"An error occurred during analysis: {result.error or 'unknown error'}"
            return ResponseMessage.failure(item.request_id, analysis), "engine_error"

        log.info("Request completed", threat_type=result.result.type.value)
        return ResponseMessage.completion(item.request_id, result.result), "completion"

    async def _ensure_worker_ready(self) -> bool:
        """
        Wait until the worker is Ready, creating it if needed.

        Returns:
            True when Ready, False when resources are insufficient

        Raises:
            WorkerUnavailableError: Creation for this request ended in load_error
        """
        attempted = False
        while True:
            state = self.lifecycle.state
            if state is WorkerState.READY:
                return True
            if state is WorkerState.INSUFFICIENT_RESOURCES:
                return False
            if state is WorkerState.LOAD_ERROR and attempted:
                raise WorkerUnavailableError(
                    f"Model failed to load: {self.lifecycle.last_error or 'unknown error'}",
                    details={"state": state.value},
                )
            if state in (WorkerState.UNLOADED, WorkerState.LOAD_ERROR):
                self.lifecycle.start_worker()
                attempted = True
            await asyncio.sleep(self.settings.MODEL_READY_POLL_SECONDS)

    def _insufficient_response(self, request_id: str) -> ResponseMessage:
        report = self.lifecycle.insufficient
        analysis = INSUFFICIENT_RESOURCES_ANALYSIS
        if report is not None:
            analysis = (
                f"{analysis} ({report.required_memory}MB required, "
                f"{report.available_memory}MB available). Please wait while memory frees up."
            )
        return ResponseMessage.failure(request_id, analysis, threat_type=ThreatType.UNKNOWN_THREAT)
