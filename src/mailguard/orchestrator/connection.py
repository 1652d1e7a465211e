"""One client channel as seen by the orchestrator."""

import structlog

from mailguard.channel.exceptions import PortClosedError
from mailguard.channel.port import Port
from mailguard.models.messages import ResponseMessage

logger = structlog.get_logger(__name__)


class Connection:
    """
    Server end of a client channel plus the request ids it is still owed.

    Responses for a connection that has gone away are logged and dropped;
    the client's reconnect opens a new Connection.
    """

    def __init__(self, connection_id: str, port: Port):
        self.connection_id = connection_id
        self.port = port
        self.outstanding: set[str] = set()

    @property
    def closed(self) -> bool:
        return self.port.closed

    def track(self, request_id: str) -> None:
        self.outstanding.add(request_id)

    async def deliver(self, response: ResponseMessage) -> bool:
        """
        Send a terminal response to the client.

        Returns:
            True if the response was handed to the channel
        """
        self.outstanding.discard(response.request_id)
        try:
            await self.port.send(response.to_wire())
        except PortClosedError:
            logger.warning(
                "Client disconnected, dropping response",
                connection_id=self.connection_id,
                request_id=response.request_id,
                threat_type=response.type.value,
            )
            return False
        return True

    async def close(self) -> None:
        await self.port.close()

    def __repr__(self) -> str:
        return f"Connection(id={self.connection_id!r}, outstanding={len(self.outstanding)})"
