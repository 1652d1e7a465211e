"""
Message channels between execution contexts.

- port.py: Port abstraction, MemoryPort (in-process pair), StreamPort (JSON lines)
- exceptions.py: PortClosedError, ChannelConnectError
"""

from mailguard.channel.exceptions import ChannelConnectError, ChannelError, PortClosedError
from mailguard.channel.port import MemoryPort, Port, StreamPort

__all__ = [
    "Port",
    "MemoryPort",
    "StreamPort",
    "ChannelError",
    "ChannelConnectError",
    "PortClosedError",
]
