"""Host resource probing with psutil."""

from typing import Callable

import psutil
import structlog

from mailguard.models.resources import ResourceSnapshot

logger = structlog.get_logger(__name__)

ResourceSampler = Callable[[], ResourceSnapshot]

_MB = 1024 * 1024


def sample_resources() -> ResourceSnapshot:
    """
    Sample available/total memory and logical CPU threads.

    Returns:
        ResourceSnapshot stamped with the current time
    """
    memory = psutil.virtual_memory()
    snapshot = ResourceSnapshot(
        available_memory_mb=int(memory.available // _MB),
        total_memory_mb=int(memory.total // _MB),
        cpu_threads=psutil.cpu_count(logical=True) or 1,
    )
    logger.debug(
        "Sampled host resources",
        available_memory_mb=snapshot.available_memory_mb,
        total_memory_mb=snapshot.total_memory_mb,
        cpu_threads=snapshot.cpu_threads,
    )
    return snapshot
