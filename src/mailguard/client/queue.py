"""
Client Request Queue.

Runs beside the observer and owns its single channel to the orchestrator:

- submit() registers a completion handler and enqueues a request with a
  fresh opaque id
- Single-flight: one request outstanding on the channel at a time, the rest
  wait in FIFO order and drain only after the previous handler fired
- Reconnect: on disconnect (or a failed connect) the queue goes idle and
  retries forever with a fixed backoff, then resumes draining

A request that was sent but not answered when the channel dropped is
abandoned: it is logged, abandon listeners are told, and its future never
resolves. It is not resent, because the orchestrator may already have run it.
"""

import asyncio
import secrets
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import ValidationError

from mailguard.channel.exceptions import ChannelError, PortClosedError
from mailguard.channel.port import Port
from mailguard.config import Settings
from mailguard.llm.prompt_builder import PromptBuilder
from mailguard.models.email import EmailContent
from mailguard.models.messages import RequestMessage, ResponseMessage
from mailguard.monitoring.metrics import client_reconnects_total

logger = structlog.get_logger(__name__)

Connector = Callable[[], Awaitable[Port]]
CompletionHandler = Callable[[ResponseMessage], None]
AbandonListener = Callable[[str, Optional[str]], None]


@dataclass
class _PendingRequest:
    request: RequestMessage
    future: asyncio.Future
    handler: Optional[CompletionHandler] = None


class ClientRequestQueue:
    """
    Serializes analysis requests onto one reconnecting channel.

    Attributes:
        connector: Coroutine function opening a new channel to the orchestrator
        prompt_builder: Renders the combined instructions + email prompt
    """

    def __init__(self, connector: Connector, prompt_builder: PromptBuilder, settings: Settings):
        self.connector = connector
        self.prompt_builder = prompt_builder
        self.backoff_seconds = settings.RECONNECT_BACKOFF_SECONDS

        self._port: Optional[Port] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._queue: deque[str] = deque()
        self._handlers: dict[str, _PendingRequest] = {}
        self._in_flight: Optional[str] = None
        self._abandon_listeners: list[AbandonListener] = []

    # === Introspection ===

    @property
    def connected(self) -> bool:
        return self._port is not None and not self._port.closed

    @property
    def in_flight(self) -> Optional[str]:
        return self._in_flight

    @property
    def pending_count(self) -> int:
        """Requests queued but not yet sent."""
        return len(self._queue)

    # === Submission ===

    def submit(self, email: EmailContent, handler: Optional[CompletionHandler] = None) -> asyncio.Future:
        """
        Queue one email for analysis.

        Args:
            email: Extracted email fields
            handler: Optional callback invoked once with the response

        Returns:
            Future resolved with the ResponseMessage
        """
        request = RequestMessage(
            request_id=secrets.token_hex(16),
            prompt=self.prompt_builder.build_prompt(email),
            fingerprint=email.fingerprint(),
        )
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._handlers[request.request_id] = _PendingRequest(request, future, handler)
        self._queue.append(request.request_id)
        logger.debug("Request queued", request_id=request.request_id, pending=len(self._queue))

        if self._port is None:
            self._ensure_connecting()
        else:
            self._schedule_dispatch()
        return future

    def add_abandon_listener(self, listener: AbandonListener) -> None:
        """Call listener(request_id, fingerprint) whenever a dispatched request is abandoned."""
        self._abandon_listeners.append(listener)

    # === Channel ===

    def _ensure_connecting(self, delay: float = 0.0) -> None:
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self._connect_loop(delay))

    async def _connect_loop(self, delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
        while True:
            try:
                port = await self.connector()
            except (ChannelError, OSError) as e:
                client_reconnects_total.labels(result="failure").inc()
                logger.warning(
                    "Failed to connect to orchestrator, retrying",
                    error=str(e),
                    backoff_seconds=self.backoff_seconds,
                )
                await asyncio.sleep(self.backoff_seconds)
                continue
            break

        client_reconnects_total.labels(result="success").inc()
        self._port = port
        # A disconnect from here on must be able to start a new connect loop
        self._connect_task = None
        self._reader_task = asyncio.create_task(self._read_responses(port))
        logger.info("Connected to orchestrator", port=port.name, pending=len(self._queue))
        await self._dispatch_next()

    def _schedule_dispatch(self) -> None:
        if self._in_flight is None and self._queue:
            asyncio.create_task(self._dispatch_next())

    async def _dispatch_next(self) -> None:
        if self._in_flight is not None or self._port is None or not self._queue:
            return

        request_id = self._queue.popleft()
        pending = self._handlers[request_id]
        port = self._port
        self._in_flight = request_id
        try:
            await port.send(pending.request.to_wire())
        except PortClosedError:
            # Not sent: back at the head of the queue for the next channel
            self._queue.appendleft(request_id)
            self._in_flight = None
            await self._on_disconnect(port)
            return

        logger.debug("Request dispatched", request_id=request_id, pending=len(self._queue))

    async def _read_responses(self, port: Port) -> None:
        async for raw in port:
            try:
                response = ResponseMessage.model_validate(raw)
            except ValidationError as e:
                logger.warning("Ignoring invalid response", error_count=e.error_count())
                continue
            self._resolve(response)
            await self._dispatch_next()

        await self._on_disconnect(port)

    def _resolve(self, response: ResponseMessage) -> None:
        pending = self._handlers.pop(response.request_id, None)
        if pending is None:
            logger.warning("Response for unknown request id", request_id=response.request_id)
            return
        if self._in_flight == response.request_id:
            self._in_flight = None

        if not pending.future.done():
            pending.future.set_result(response)
        if pending.handler is not None:
            try:
                pending.handler(response)
            except Exception:
                logger.exception("Completion handler raised", request_id=response.request_id)

    async def _on_disconnect(self, port: Port) -> None:
        if port is not self._port:
            return
        self._port = None

        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()

        if self._in_flight is not None:
            request_id, self._in_flight = self._in_flight, None
            abandoned = self._handlers.pop(request_id, None)
            fingerprint = abandoned.request.fingerprint if abandoned else None
            logger.warning(
                "Channel lost with a dispatched request, abandoning it",
                request_id=request_id,
                fingerprint=fingerprint,
            )
            for listener in self._abandon_listeners:
                try:
                    listener(request_id, fingerprint)
                except Exception:
                    logger.exception("Abandon listener raised", request_id=request_id)

        logger.warning("Disconnected from orchestrator", pending=len(self._queue))
        await port.close()
        self._ensure_connecting(delay=self.backoff_seconds)

    # === Teardown ===

    async def clear(self) -> None:
        """
        Tear the queue down: drop pending requests without invoking their
        handlers, cancel their futures, and close the channel.
        """
        tasks = [t for t in (self._connect_task, self._reader_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._connect_task = self._reader_task = None

        drained = len(self._handlers)
        for pending in self._handlers.values():
            pending.future.cancel()
        self._handlers.clear()
        self._queue.clear()
        self._in_flight = None

        port, self._port = self._port, None
        if port is not None:
            await port.close()
        logger.info("Client request queue cleared", drained=drained)
