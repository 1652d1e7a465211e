"""
Message ports connecting execution contexts.

A port is one end of a bidirectional, ordered message channel carrying
JSON-compatible dicts. Contexts never share objects: MemoryPort copies every
message through a JSON round-trip, StreamPort serializes to JSON lines.

Implementations:
- MemoryPort: in-process pair backed by asyncio queues (client <-> orchestrator,
  orchestrator <-> in-process worker)
- StreamPort: JSON lines over asyncio streams (orchestrator <-> worker subprocess)
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

import structlog

from mailguard.channel.exceptions import PortClosedError


logger = structlog.get_logger(__name__)

_CLOSED = object()


class Port(ABC):
    """
    Abstract message port.

    Iterating a port yields received messages until the channel closes;
    receive() raises PortClosedError instead.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """
        Send one message to the peer.

        Raises:
            PortClosedError: The channel is closed on either end
        """

    @abstractmethod
    async def receive(self) -> dict[str, Any]:
        """
        Wait for the next message from the peer.

        Raises:
            PortClosedError: The channel closed before a message arrived
        """

    @abstractmethod
    async def close(self) -> None:
        """Close this end. The peer observes PortClosedError. Idempotent."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict[str, Any]:
        try:
            return await self.receive()
        except PortClosedError:
            raise StopAsyncIteration

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, closed={self.closed})"


class MemoryPort(Port):
    """One end of an in-process channel. Create ends with MemoryPort.pair()."""

    def __init__(self, name: str, inbox: asyncio.Queue, outbox: asyncio.Queue):
        super().__init__(name)
        self._inbox = inbox
        self._outbox = outbox
        self._peer: "MemoryPort | None" = None
        self._closed = False

    @classmethod
    def pair(cls, name: str) -> tuple["MemoryPort", "MemoryPort"]:
        """Create two connected ends (a, b)."""
        a_to_b: asyncio.Queue = asyncio.Queue()
        b_to_a: asyncio.Queue = asyncio.Queue()
        a = cls(name, inbox=b_to_a, outbox=a_to_b)
        b = cls(name, inbox=a_to_b, outbox=b_to_a)
        a._peer = b
        b._peer = a
        return a, b

    @property
    def closed(self) -> bool:
        return self._closed or (self._peer is not None and self._peer._closed)

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise PortClosedError(
                f"Port {self.name!r} is closed",
                details={"port": self.name},
            )
        # Copy through JSON so no mutable state crosses the channel
        self._outbox.put_nowait(json.loads(json.dumps(message)))

    async def receive(self) -> dict[str, Any]:
        if self._closed:
            raise PortClosedError(f"Port {self.name!r} is closed", details={"port": self.name})
        item = await self._inbox.get()
        if item is _CLOSED:
            self._closed = True
            raise PortClosedError(
                f"Port {self.name!r} disconnected",
                details={"port": self.name},
            )
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._outbox.put_nowait(_CLOSED)
        # Wake any receiver blocked on this end
        self._inbox.put_nowait(_CLOSED)
        logger.debug("Memory port closed", port=self.name)


class StreamPort(Port):
    """
    JSON-lines port over an asyncio StreamReader/StreamWriter pair.

    Used for the worker subprocess: the parent wraps the child's stdout/stdin,
    the child wraps its own stdin/stdout. Undecodable lines are logged and
    skipped.
    """

    def __init__(self, name: str, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        super().__init__(name)
        self._reader = reader
        self._writer = writer
        self._write_lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise PortClosedError(f"Port {self.name!r} is closed", details={"port": self.name})

        data = (json.dumps(message, separators=(",", ":")) + "\n").encode("utf-8")
        async with self._write_lock:
            try:
                self._writer.write(data)
                await self._writer.drain()
            except (ConnectionError, RuntimeError) as e:
                self._closed = True
                raise PortClosedError(
                    f"Port {self.name!r} broken: {e}",
                    details={"port": self.name, "error_type": type(e).__name__},
                ) from e

    async def receive(self) -> dict[str, Any]:
        while True:
            if self._closed:
                raise PortClosedError(f"Port {self.name!r} is closed", details={"port": self.name})

            line = await self._reader.readline()
            if not line:
                self._closed = True
                raise PortClosedError(f"Port {self.name!r} reached EOF", details={"port": self.name})

            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(
                    "Skipping undecodable line on port",
                    port=self.name,
                    error=str(e),
                    line_snippet=line[:200].decode("utf-8", errors="replace"),
                )
                continue

            if not isinstance(message, dict):
                logger.warning("Skipping non-object message on port", port=self.name)
                continue
            return message

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, RuntimeError) as e:
            logger.debug("Stream already torn down on close", port=self.name, error=str(e))
