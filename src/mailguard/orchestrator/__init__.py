"""
Background orchestration of analysis requests.

- orchestrator.py: BackgroundOrchestrator (admission FIFO, single-flight loop, demux)
- connection.py: Connection (one client channel, outstanding request ids)
- lifecycle.py: WorkerLifecycleManager (WorkerState machine, idle teardown, recovery)
- hosts.py: WorkerHost implementations (subprocess, in-process)
- resources.py: psutil resource sampler
- exceptions.py: Orchestrator error hierarchy
"""

from mailguard.orchestrator.connection import Connection
from mailguard.orchestrator.exceptions import (
    IllegalTransitionError,
    OrchestratorError,
    WorkerCrashedError,
    WorkerStartError,
    WorkerUnavailableError,
)
from mailguard.orchestrator.hosts import (
    InProcessWorkerHost,
    SubprocessWorkerHost,
    WorkerHost,
    build_host_factory,
)
from mailguard.orchestrator.lifecycle import WorkerLifecycleManager
from mailguard.orchestrator.orchestrator import BackgroundOrchestrator
from mailguard.orchestrator.resources import sample_resources

__all__ = [
    "BackgroundOrchestrator",
    "Connection",
    "WorkerLifecycleManager",
    "WorkerHost",
    "SubprocessWorkerHost",
    "InProcessWorkerHost",
    "build_host_factory",
    "sample_resources",
    "OrchestratorError",
    "IllegalTransitionError",
    "WorkerStartError",
    "WorkerUnavailableError",
    "WorkerCrashedError",
]
