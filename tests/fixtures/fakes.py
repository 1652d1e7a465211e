"""Test doubles for the engine capability, Redis, resource probing, and the orchestrator channel."""

import asyncio
import json
from typing import Optional, Union

from redis.exceptions import ConnectionError as RedisConnectionError

from mailguard.channel.exceptions import ChannelConnectError
from mailguard.channel.port import MemoryPort, Port
from mailguard.llm.base_engine import BaseInferenceEngine, ProgressCallback
from mailguard.llm.exceptions import ModelNotLoadedError
from mailguard.models.llm_models import ModelLoadConfig, SamplingParams
from mailguard.models.messages import AnalysisResult, RequestMessage, ResponseMessage
from mailguard.models.resources import ResourceSnapshot

VALID_COMPLETION = json.dumps(
    {
        "brief_analysis": "Urgent request to verify credentials via an unfamiliar link.",
        "type": "phishing",
        "confidence": 0.92,
    }
)


class FakeEngine(BaseInferenceEngine):
    """
    Scripted engine. Tokens are whitespace-separated words.

    ``completions`` items are returned (str) or raised (exception) in order;
    once exhausted every call returns ``default_completion``.
    """

    def __init__(
        self,
        completions: Optional[list[Union[str, BaseException]]] = None,
        load_error: Optional[BaseException] = None,
        default_completion: str = VALID_COMPLETION,
    ):
        super().__init__()
        self.completions = list(completions or [])
        self.load_error = load_error
        self.default_completion = default_completion
        self.load_calls: list[ModelLoadConfig] = []
        self.complete_calls: list[str] = []
        self.trim_calls: list[int] = []
        self.closed = False

    def load(self, config: ModelLoadConfig, progress_callback: Optional[ProgressCallback] = None) -> None:
        self.load_calls.append(config)
        if self.load_error is not None:
            raise self.load_error
        if progress_callback:
            progress_callback(50)
            progress_callback(100)
        self._load_config = config

    def tokenize(self, text: str) -> list[int]:
        if not self.is_loaded:
            raise ModelNotLoadedError("Model not loaded")
        return list(range(len(text.split())))

    def complete(self, prompt: str, sampling: SamplingParams) -> str:
        if not self.is_loaded:
            raise ModelNotLoadedError("Model not loaded")
        self.complete_calls.append(prompt)
        item = self.completions.pop(0) if self.completions else self.default_completion
        if isinstance(item, BaseException):
            raise item
        return item

    def trim_session(self, n_tokens: int) -> None:
        self.trim_calls.append(n_tokens)

    def close(self) -> None:
        self.closed = True
        super().close()


class EngineRecorder:
    """Engine factory that remembers every engine it built."""

    def __init__(self, **engine_kwargs):
        self.engine_kwargs = engine_kwargs
        self.engines: list[FakeEngine] = []

    def __call__(self) -> FakeEngine:
        engine = FakeEngine(**self.engine_kwargs)
        self.engines.append(engine)
        return engine

    @property
    def complete_calls(self) -> int:
        return sum(len(engine.complete_calls) for engine in self.engines)


class StaticSampler:
    """Resource sampler with adjustable available memory."""

    def __init__(self, available_memory_mb: int = 16000, total_memory_mb: int = 32000, cpu_threads: int = 8):
        self.available_memory_mb = available_memory_mb
        self.total_memory_mb = total_memory_mb
        self.cpu_threads = cpu_threads
        self.calls = 0

    def __call__(self) -> ResourceSnapshot:
        self.calls += 1
        return ResourceSnapshot(
            available_memory_mb=self.available_memory_mb,
            total_memory_mb=self.total_memory_mb,
            cpu_threads=self.cpu_threads,
        )


class FakeAsyncRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis the cache uses."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Redis unavailable")

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str, nx: bool = False) -> Optional[bool]:
        self._check()
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def scan_iter(self, match: str = "*", count: Optional[int] = None):
        self._check()
        prefix = match.rstrip("*")
        for key in list(self.store):
            if key.startswith(prefix):
                yield key

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def ping(self) -> bool:
        self._check()
        return True


RESULT = AnalysisResult(brief_analysis="Looks routine.", type="safe", confidence=0.8)


class ScriptedServer:
    """
    Connector standing in for the orchestrator: hands out MemoryPort pairs
    and keeps the server ends so a test can read requests and reply.
    """

    def __init__(self, failures: int = 0, wrap=None):
        self.failures = failures
        self.wrap = wrap
        self.attempts = 0
        self.server_ports: list[MemoryPort] = []

    async def __call__(self) -> Port:
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise ChannelConnectError("orchestrator not reachable")
        client_end, server_end = MemoryPort.pair(f"test-{self.attempts}")
        self.server_ports.append(server_end)
        return self.wrap(client_end) if self.wrap else client_end

    @property
    def current(self) -> MemoryPort:
        return self.server_ports[-1]

    async def next_request(self, timeout: float = 1.0) -> RequestMessage:
        async def _wait_for_port():
            while not self.server_ports or self.current.closed:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_wait_for_port(), timeout)
        raw = await asyncio.wait_for(self.current.receive(), timeout)
        return RequestMessage.model_validate(raw)

    async def reply(self, request: RequestMessage, result: AnalysisResult = RESULT) -> None:
        await self.current.send(ResponseMessage.completion(request.request_id, result).to_wire())
