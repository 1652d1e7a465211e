"""
On-device email threat scanner.

Classifies email messages for security threats with a locally run language
model. Content never leaves the machine:
- Client Request Queue: single-flight, reconnecting channel to the orchestrator
- Background Orchestrator: admission control and response demultiplexing
- Worker Lifecycle Manager: ephemeral worker process, idle teardown, resource recovery
- Inference Worker Proxy: model sizing, context budget, constrained decoding
- Fingerprint Cache: Redis-backed results keyed by content digest

Architecture: asyncio actors connected by message ports + llama.cpp worker process
"""

__version__ = "0.1.0"
