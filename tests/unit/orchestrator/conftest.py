"""Orchestrator test fixtures: in-process worker hosts backed by FakeEngine."""

import asyncio

import pytest

from mailguard.models.enums import WorkerState
from mailguard.orchestrator.hosts import InProcessWorkerHost
from mailguard.orchestrator.lifecycle import WorkerLifecycleManager


class RecordingHostFactory:
    """Builds InProcessWorkerHosts and remembers them."""

    def __init__(self, engine_factory, settings):
        self.engine_factory = engine_factory
        self.settings = settings
        self.hosts: list[InProcessWorkerHost] = []

    def __call__(self) -> InProcessWorkerHost:
        host = InProcessWorkerHost(self.engine_factory, self.settings)
        self.hosts.append(host)
        return host


async def wait_for_state(lifecycle: WorkerLifecycleManager, state: WorkerState, timeout: float = 2.0) -> None:
    async def _wait():
        while lifecycle.state is not state:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_wait(), timeout)


@pytest.fixture
def host_factory(engine_recorder, test_settings):
    return RecordingHostFactory(engine_recorder, test_settings)


@pytest.fixture
def lifecycle(host_factory, test_settings, sampler):
    return WorkerLifecycleManager(host_factory=host_factory, settings=test_settings, sampler=sampler)
