"""
Exceptions for message channels.

A channel failure is a *connection* error: the Client Request Queue handles
it locally by reconnecting, and the orchestrator treats it as a departed
client.
"""


class ChannelError(Exception):
    """Base exception for all channel errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class PortClosedError(ChannelError):
    """
    Raised when sending on, or receiving from, a port whose peer is gone.

    Ports close when either end calls close(), when a pipe reaches EOF,
    or when the process on the other side exits.
    """
    pass


class ChannelConnectError(ChannelError):
    """Raised by a connector when no channel can be opened right now."""
    pass
