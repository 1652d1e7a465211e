"""
Unit tests for the worker control loop, driven over an in-memory port.
"""

import asyncio

import pytest

from mailguard.channel.port import MemoryPort
from mailguard.llm.exceptions import EngineFailureError
from mailguard.models.control import (
    GetSystemInfoMessage,
    InferenceCommand,
    InitializeMessage,
    SystemInfoMessage,
    parse_control_message,
)
from mailguard.models.messages import RequestMessage
from mailguard.models.resources import ResourceSnapshot
from mailguard.worker.proxy import InferenceWorkerProxy
from mailguard.worker.runtime import WorkerRuntime
from tests.fixtures.fakes import FakeEngine


async def receive_until(port, message_type, timeout=2.0):
    """Read control messages until one of message_type arrives; return it and the skipped ones."""
    skipped = []
    while True:
        message = parse_control_message(await asyncio.wait_for(port.receive(), timeout))
        if message.type == message_type:
            return message, skipped
        skipped.append(message)


@pytest.fixture
def make_runtime(prompt_builder, test_settings):
    def _make(engine):
        proxy = InferenceWorkerProxy(engine, prompt_builder.build_system_prompt(), test_settings)
        orchestrator_end, worker_end = MemoryPort.pair("test-worker")
        task = asyncio.create_task(WorkerRuntime(worker_end, proxy).run())
        return orchestrator_end, task

    return _make


async def answer_system_info(port, available_memory_mb):
    request, _ = await receive_until(port, "getSystemInfo")
    assert isinstance(request, GetSystemInfoMessage)
    snapshot = ResourceSnapshot(available_memory_mb=available_memory_mb, total_memory_mb=32000, cpu_threads=8)
    await port.send(SystemInfoMessage(correlation_id=request.correlation_id, snapshot=snapshot).to_wire())


@pytest.mark.asyncio
async def test_initialize_loads_model_and_reports_context(make_runtime):
    port, task = make_runtime(FakeEngine())

    await port.send(InitializeMessage().to_wire())
    await answer_system_info(port, 16000)
    loaded, skipped = await receive_until(port, "modelLoaded")

    assert loaded.context_size == 8192
    assert loaded.model_name.startswith("gemma-3-4b")
    assert all(m.type == "modelLoadProgress" for m in skipped)

    await port.close()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_initialize_reports_insufficient_resources(make_runtime):
    port, task = make_runtime(FakeEngine())

    await port.send(InitializeMessage().to_wire())
    await answer_system_info(port, 1500)
    report, _ = await receive_until(port, "insufficientResources")

    assert report.available_memory == 1500
    assert report.required_memory > 1500

    await port.close()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_initialize_reports_load_error(make_runtime):
    port, task = make_runtime(FakeEngine(load_error=EngineFailureError("Model file not found")))

    await port.send(InitializeMessage().to_wire())
    await answer_system_info(port, 16000)
    error, _ = await receive_until(port, "modelLoadError")

    assert "Model file not found" in error.error

    await port.close()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_inference_round_trip(make_runtime):
    engine = FakeEngine(completions=["garbage", "garbage"])
    port, task = make_runtime(engine)
    await port.send(InitializeMessage().to_wire())
    await answer_system_info(port, 16000)
    await receive_until(port, "modelLoaded")

    failing = InferenceCommand(correlation_id="c1", request=RequestMessage(request_id="r1", prompt="hello"))
    await port.send(failing.to_wire())
    failed, _ = await receive_until(port, "inferenceResult")

    ok = InferenceCommand(correlation_id="c2", request=RequestMessage(request_id="r2", prompt="hello"))
    await port.send(ok.to_wire())
    succeeded, _ = await receive_until(port, "inferenceResult")

    assert failed.correlation_id == "c1"
    assert failed.success is False
    assert failed.error_kind == "parse_failure"
    assert succeeded.correlation_id == "c2"
    assert succeeded.success is True
    assert succeeded.result.type.value == "phishing"

    await port.close()
    await asyncio.wait_for(task, 2)
    assert engine.closed


@pytest.mark.asyncio
async def test_invalid_messages_are_ignored(make_runtime):
    port, task = make_runtime(FakeEngine())

    await port.send({"type": "selfDestruct"})
    await port.send(InitializeMessage().to_wire())
    await answer_system_info(port, 16000)
    loaded, _ = await receive_until(port, "modelLoaded")

    assert loaded.context_size > 0
    await port.close()
    await asyncio.wait_for(task, 2)
