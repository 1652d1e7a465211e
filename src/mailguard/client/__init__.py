"""
Client side of the channel (runs beside the content observer).

- queue.py: ClientRequestQueue (single-flight FIFO, reconnecting channel)
- scanner.py: EmailScanner (fingerprint cache in front of the queue)
"""

from mailguard.client.queue import ClientRequestQueue
from mailguard.client.scanner import EmailScanner, ScanOutcome

__all__ = [
    "ClientRequestQueue",
    "EmailScanner",
    "ScanOutcome",
]
