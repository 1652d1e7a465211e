"""
Worker Lifecycle Manager.

Owns the single ephemeral inference worker and its WorkerState:

    unloaded -> creating -> awaiting_model -> ready -> unloading -> unloaded
                                 |
                                 +-> insufficient_resources --(recovery poll)--> unloaded
    creating / awaiting_model / ready -> load_error -> creating (next admission)

All methods run on the orchestrator's event loop; the state is only changed
through _transition(), which rejects edges missing from WORKER_TRANSITIONS.
"""

import asyncio
import secrets
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from mailguard.channel.exceptions import PortClosedError
from mailguard.channel.port import Port
from mailguard.config import Settings
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
from mailguard.models.enums import WORKER_TRANSITIONS, WorkerState
from mailguard.models.messages import RequestMessage
from mailguard.monitoring.metrics import worker_state, worker_transitions_total
from mailguard.orchestrator.exceptions import (
    IllegalTransitionError,
    WorkerCrashedError,
    WorkerStartError,
    WorkerUnavailableError,
)
from mailguard.orchestrator.hosts import WorkerHost
from mailguard.orchestrator.resources import ResourceSampler, sample_resources

logger = structlog.get_logger(__name__)


class WorkerLifecycleManager:
    """
    State machine around one WorkerHost at a time.

    Attributes:
        state: Current WorkerState
        context_size: Effective context window reported by modelLoaded
        insufficient: Last insufficientResources report (while in that state)
        last_error: Last load failure message (while in load_error)
    """

    def __init__(
        self,
        host_factory: Callable[[], WorkerHost],
        settings: Settings,
        sampler: ResourceSampler = sample_resources,
    ):
        self.host_factory = host_factory
        self.settings = settings
        self.sampler = sampler

        self.state = WorkerState.UNLOADED
        self.context_size: Optional[int] = None
        self.model_name: Optional[str] = None
        self.insufficient: Optional[InsufficientResourcesMessage] = None
        self.last_error: Optional[str] = None

        self._host: Optional[WorkerHost] = None
        self._port: Optional[Port] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._creation_task: Optional[asyncio.Task] = None
        self._idle_task: Optional[asyncio.Task] = None
        self._recovery_task: Optional[asyncio.Task] = None
        self._pending: dict[str, asyncio.Future] = {}
        # Called after each transition to Ready
        self.on_ready: Optional[Callable[[], None]] = None

        worker_state.state(self.state.value)

    # === State ===

    def _transition(self, target: WorkerState, **context) -> None:
        if target not in WORKER_TRANSITIONS[self.state]:
            raise IllegalTransitionError(self.state.value, target.value)

        previous = self.state
        self.state = target
        worker_state.state(target.value)
        worker_transitions_total.labels(from_state=previous.value, to_state=target.value).inc()
        logger.info(
            "Worker state changed",
            from_state=previous.value,
            to_state=target.value,
            **context,
        )

    @property
    def is_ready(self) -> bool:
        return self.state is WorkerState.READY

    @property
    def idle_teardown_pending(self) -> bool:
        return self._idle_task is not None and not self._idle_task.done()

    # === Creation ===

    def start_worker(self) -> Optional[asyncio.Task]:
        """
        Begin creating the worker if it is unloaded or failed.

        Concurrent calls share one creation. Returns the creation task, or
        None when the current state does not allow creation.
        """
        if self._creation_task is not None and not self._creation_task.done():
            return self._creation_task
        if self.state not in (WorkerState.UNLOADED, WorkerState.LOAD_ERROR):
            return None

        self.last_error = None
        self._transition(WorkerState.CREATING)
        self._creation_task = asyncio.create_task(self._create())
        return self._creation_task

    def prewarm(self) -> Optional[asyncio.Task]:
        """Create the worker ahead of the first admission."""
        logger.info("Worker prewarm requested", state=self.state.value)
        return self.start_worker()

    async def _create(self) -> None:
        host = self.host_factory()
        try:
            port = await host.start()
        except WorkerStartError as e:
            self.last_error = e.message
            self._transition(WorkerState.LOAD_ERROR, error=e.message)
            return

        self._host, self._port = host, port
        self._transition(WorkerState.AWAITING_MODEL)
        self._reader_task = asyncio.create_task(self._read_worker(port))
        try:
            await port.send(InitializeMessage().to_wire())
        except PortClosedError as e:
            logger.error("Worker closed before initialize", error=e.message)

    async def _read_worker(self, port: Port) -> None:
        async for raw in port:
            try:
                message = parse_control_message(raw)
            except ValidationError as e:
                logger.warning("Ignoring invalid worker message", error=str(e), raw_type=raw.get("type"))
                continue
            await self._handle(port, message)

        if self._port is port:
            # Channel ended without us disposing it: the worker died
            logger.error("Worker exited unexpectedly", state=self.state.value)
            await self._dispose_worker()
            self.last_error = "Worker exited unexpectedly"
            self.context_size = None
            if self.state in (WorkerState.AWAITING_MODEL, WorkerState.READY):
                self._transition(WorkerState.LOAD_ERROR, error=self.last_error)

    async def _handle(self, port: Port, message) -> None:
        if isinstance(message, ModelLoadedMessage):
            if self.state is not WorkerState.AWAITING_MODEL:
                logger.warning("Unexpected modelLoaded", state=self.state.value)
                return
            self.context_size = message.context_size
            self.model_name = message.model_name
            self._transition(
                WorkerState.READY,
                context_size=message.context_size,
                model=message.model_name,
            )
            if self.on_ready is not None:
                self.on_ready()

        elif isinstance(message, ModelLoadProgressMessage):
            logger.debug("Model load progress", percentage=message.percentage)

        elif isinstance(message, InsufficientResourcesMessage):
            if self.state is not WorkerState.AWAITING_MODEL:
                logger.warning("Unexpected insufficientResources", state=self.state.value)
                return
            await self._dispose_worker()
            self.insufficient = message
            self._transition(
                WorkerState.INSUFFICIENT_RESOURCES,
                required_memory_mb=message.required_memory,
                available_memory_mb=message.available_memory,
            )
            self._recovery_task = asyncio.create_task(self._recover(message.required_memory))

        elif isinstance(message, ModelLoadErrorMessage):
            await self._dispose_worker()
            self.last_error = message.error
            self._transition(WorkerState.LOAD_ERROR, error=message.error)

        elif isinstance(message, GetSystemInfoMessage):
            snapshot = self.sampler()
            reply = SystemInfoMessage(correlation_id=message.correlation_id, snapshot=snapshot)
            try:
                await port.send(reply.to_wire())
            except PortClosedError:
                logger.warning("Worker port closed before systemInfo reply")

        elif isinstance(message, InferenceResultMessage):
            future = self._pending.pop(message.correlation_id, None)
            if future is None:
                logger.warning("Inference result for unknown correlation id", correlation_id=message.correlation_id)
            elif not future.done():
                future.set_result(message)

        else:
            logger.warning("Unexpected control message from worker", message_type=message.type)

    async def _dispose_worker(self) -> None:
        host, port, reader = self._host, self._port, self._reader_task
        self._host = self._port = self._reader_task = None

        if port is not None:
            await port.close()
        if host is not None:
            await host.stop()
        if reader is not None and reader is not asyncio.current_task():
            await asyncio.gather(reader, return_exceptions=True)

        for correlation_id, future in self._pending.items():
            if not future.done():
                future.set_exception(
                    WorkerCrashedError(
                        "Worker stopped while inference was outstanding",
                        details={"correlation_id": correlation_id},
                    )
                )
        self._pending.clear()

    # === Resource recovery ===

    async def _recover(self, required_memory_mb: int) -> None:
        interval = self.settings.RESOURCE_POLL_SECONDS
        logger.info(
            "Resource recovery polling started",
            required_memory_mb=required_memory_mb,
            interval_seconds=interval,
        )
        while True:
            await asyncio.sleep(interval)
            snapshot = self.sampler()
            if snapshot.available_memory_mb >= required_memory_mb:
                break
            logger.debug(
                "Still insufficient memory",
                required_memory_mb=required_memory_mb,
                available_memory_mb=snapshot.available_memory_mb,
            )

        self.insufficient = None
        self._transition(
            WorkerState.UNLOADED,
            reason="resources_recovered",
            available_memory_mb=snapshot.available_memory_mb,
        )

    # === Inference ===

    async def infer(self, request: RequestMessage) -> InferenceResultMessage:
        """
        Forward one request to the Ready worker and wait for its result.

        Raises:
            WorkerUnavailableError: Worker is not Ready
            WorkerCrashedError: Worker went away before replying
        """
        if self.state is not WorkerState.READY or self._port is None:
            raise WorkerUnavailableError(
                f"Worker is not ready (state={self.state.value})",
                details={"state": self.state.value},
            )

        correlation_id = secrets.token_hex(8)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future
        command = InferenceCommand(correlation_id=correlation_id, request=request)
        try:
            await self._port.send(command.to_wire())
        except PortClosedError as e:
            self._pending.pop(correlation_id, None)
            raise WorkerCrashedError(
                "Worker port closed before inference was sent",
                details={"request_id": request.request_id},
            ) from e
        return await future

    # === Idle teardown ===

    def arm_idle_teardown(self) -> None:
        """(Re)start the idle-teardown timer."""
        self.cancel_idle_teardown()
        if self.state is not WorkerState.READY:
            return
        delay = self.settings.IDLE_TEARDOWN_SECONDS
        self._idle_task = asyncio.create_task(self._idle_teardown_after(delay))
        logger.debug("Idle teardown armed", delay_seconds=delay)

    def cancel_idle_teardown(self) -> None:
        if self._idle_task is not None and not self._idle_task.done():
            self._idle_task.cancel()
            logger.debug("Idle teardown cancelled")
        self._idle_task = None

    async def _idle_teardown_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Past this point an admission can no longer cancel the teardown
        self._idle_task = None
        await self.teardown(reason="idle")

    async def teardown(self, reason: str = "requested") -> None:
        """Ready -> Unloading -> Unloaded. No-op in any other state."""
        if self.state is not WorkerState.READY:
            return
        self._transition(WorkerState.UNLOADING, reason=reason)
        await self._dispose_worker()
        self.context_size = None
        self.model_name = None
        self._transition(WorkerState.UNLOADED, reason=reason)

    # === Shutdown ===

    async def stop(self) -> None:
        """Cancel timers and loops and destroy any worker."""
        self.cancel_idle_teardown()
        tasks = [t for t in (self._recovery_task, self._creation_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._recovery_task = self._creation_task = None

        if self.state is WorkerState.READY:
            await self.teardown(reason="shutdown")
        else:
            await self._dispose_worker()
        logger.info("Worker lifecycle stopped", state=self.state.value)
