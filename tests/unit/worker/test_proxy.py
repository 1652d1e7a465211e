"""
Unit tests for InferenceWorkerProxy.
"""

import pytest

from mailguard.llm.exceptions import (
    EngineFailureError,
    InsufficientResourcesError,
    ModelNotLoadedError,
    OutputParseError,
)
from mailguard.models.enums import ThreatType
from mailguard.models.messages import RequestMessage
from mailguard.models.resources import ResourceSnapshot
from mailguard.worker.proxy import InferenceWorkerProxy
from tests.fixtures.fakes import VALID_COMPLETION, FakeEngine

PLENTY = ResourceSnapshot(available_memory_mb=16000, total_memory_mb=32000, cpu_threads=8)


def make_request(prompt: str) -> RequestMessage:
    return RequestMessage(request_id="req-1", prompt=prompt)


@pytest.fixture
def system_prompt(prompt_builder):
    return prompt_builder.build_system_prompt()


def make_proxy(engine, system_prompt, settings):
    return InferenceWorkerProxy(engine=engine, system_prompt=system_prompt, settings=settings)


@pytest.mark.asyncio
async def test_load_reserves_instruction_tokens(system_prompt, test_settings):
    engine = FakeEngine()
    proxy = make_proxy(engine, system_prompt, test_settings)

    config = await proxy.load(PLENTY)

    assert proxy.is_loaded
    assert proxy.context_size == config.n_ctx == 8192
    assert proxy.reserved_tokens == len(system_prompt.split())


@pytest.mark.asyncio
async def test_load_is_done_once(system_prompt, test_settings):
    engine = FakeEngine()
    proxy = make_proxy(engine, system_prompt, test_settings)

    await proxy.load(PLENTY)
    await proxy.load(PLENTY)

    assert len(engine.load_calls) == 1


@pytest.mark.asyncio
async def test_load_insufficient_resources_loads_nothing(system_prompt, test_settings):
    engine = FakeEngine()
    proxy = make_proxy(engine, system_prompt, test_settings)
    tiny = ResourceSnapshot(available_memory_mb=1000, total_memory_mb=4000, cpu_threads=4)

    with pytest.raises(InsufficientResourcesError):
        await proxy.load(tiny)

    assert engine.load_calls == []
    assert not proxy.is_loaded


@pytest.mark.asyncio
async def test_infer_before_load_raises(system_prompt, test_settings):
    proxy = make_proxy(FakeEngine(), system_prompt, test_settings)

    with pytest.raises(ModelNotLoadedError):
        await proxy.infer(make_request("hello"))


@pytest.mark.asyncio
async def test_infer_returns_parsed_result_and_trims_session(system_prompt, test_settings):
    engine = FakeEngine()
    proxy = make_proxy(engine, system_prompt, test_settings)
    await proxy.load(PLENTY)

    result = await proxy.infer(make_request(f"{system_prompt}\n\nSubject: hi"))

    assert result.type is ThreatType.PHISHING
    assert engine.trim_calls == [proxy.reserved_tokens]


@pytest.mark.asyncio
async def test_oversized_prompt_short_circuits_without_completion(system_prompt, test_settings):
    engine = FakeEngine()
    proxy = make_proxy(engine, system_prompt, test_settings)
    await proxy.load(PLENTY)
    budget = proxy.context_size - proxy.reserved_tokens - test_settings.CONTEXT_RESERVE_FLOOR
    body = " ".join(["word"] * (budget + 1))

    result = await proxy.infer(make_request(f"{system_prompt}\n\n{body}"))

    assert result.type is ThreatType.UNKNOWN_THREAT
    assert "too long" in result.brief_analysis
    assert engine.complete_calls == []


@pytest.mark.asyncio
async def test_prompt_exactly_at_budget_is_processed(system_prompt, test_settings):
    engine = FakeEngine()
    proxy = make_proxy(engine, system_prompt, test_settings)
    await proxy.load(PLENTY)
    budget = proxy.context_size - proxy.reserved_tokens - test_settings.CONTEXT_RESERVE_FLOOR
    body = " ".join(["word"] * budget)

    result = await proxy.infer(make_request(f"{system_prompt}\n\n{body}"))

    assert result.type is ThreatType.PHISHING
    assert len(engine.complete_calls) == 1


@pytest.mark.asyncio
async def test_parse_failure_is_retried_once(system_prompt, test_settings):
    engine = FakeEngine(completions=["garbage", VALID_COMPLETION])
    proxy = make_proxy(engine, system_prompt, test_settings)
    await proxy.load(PLENTY)

    result = await proxy.infer(make_request("short prompt"))

    assert result.type is ThreatType.PHISHING
    assert len(engine.complete_calls) == 2
    assert engine.complete_calls[0] == engine.complete_calls[1]
    assert engine.trim_calls == [proxy.reserved_tokens] * 2


@pytest.mark.asyncio
async def test_second_failure_is_surfaced(system_prompt, test_settings):
    engine = FakeEngine(completions=["garbage", "still garbage", VALID_COMPLETION])
    proxy = make_proxy(engine, system_prompt, test_settings)
    await proxy.load(PLENTY)

    with pytest.raises(OutputParseError):
        await proxy.infer(make_request("short prompt"))

    assert len(engine.complete_calls) == 2


@pytest.mark.asyncio
async def test_untyped_engine_error_is_retried_then_typed(system_prompt, test_settings):
    engine = FakeEngine(completions=[RuntimeError("decode failed"), RuntimeError("decode failed")])
    proxy = make_proxy(engine, system_prompt, test_settings)
    await proxy.load(PLENTY)

    with pytest.raises(EngineFailureError):
        await proxy.infer(make_request("short prompt"))

    assert len(engine.complete_calls) == 2


@pytest.mark.asyncio
async def test_context_overflow_from_engine_degrades_to_unknown(system_prompt, test_settings):
    engine = FakeEngine(completions=[ValueError("Requested tokens exceed context window")])
    proxy = make_proxy(engine, system_prompt, test_settings)
    await proxy.load(PLENTY)

    result = await proxy.infer(make_request("short prompt"))

    assert result.type is ThreatType.UNKNOWN_THREAT
    assert result.confidence == 0.5
    assert len(engine.complete_calls) == 1


@pytest.mark.asyncio
async def test_close_releases_engine(system_prompt, test_settings):
    engine = FakeEngine()
    proxy = make_proxy(engine, system_prompt, test_settings)
    await proxy.load(PLENTY)

    proxy.close()

    assert engine.closed
    assert not proxy.is_loaded
