"""
Inference Worker Proxy.

Bridges one request at a time to the opaque inference engine:
- Sizing and loading (once per worker lifetime)
- Per-request context-budget check (no engine call for oversized prompts)
- Grammar-constrained completion with one retry on parse/engine failure
- Session trimming back to the fixed instruction prefix after every attempt

The orchestrator serializes all access to the worker, so the proxy keeps
no locks. Blocking engine calls run in a thread to keep the worker's event
loop responsive to control messages.
"""

import asyncio
import time
from typing import Optional

import structlog

from mailguard.config import Settings
from mailguard.llm.base_engine import BaseInferenceEngine, ProgressCallback
from mailguard.llm.exceptions import (
    ContextOverflowError,
    EngineError,
    ModelNotLoadedError,
    classify_engine_error,
)
from mailguard.llm.output_parser import ANALYSIS_GRAMMAR, parse_analysis
from mailguard.models.enums import ThreatType
from mailguard.models.llm_models import ModelLoadConfig, SamplingParams
from mailguard.models.messages import AnalysisResult, RequestMessage
from mailguard.models.resources import ResourceSnapshot
from mailguard.monitoring.metrics import inference_latency_seconds, inference_retries_total
from mailguard.worker.sizing import plan_model_load

logger = structlog.get_logger(__name__)

TOO_LONG_RESULT = AnalysisResult(
    brief_analysis=(
        "The input text is too long to process reliably within the available context "
        "window. Unable to provide accurate threat assessment."
    ),
    type=ThreatType.UNKNOWN_THREAT,
    confidence=0.5,
)

CONTEXT_LIMIT_RESULT = AnalysisResult(
    brief_analysis=(
        "Analysis failed due to context window limitations. The input might be too "
        "complex or contain too many tokens to analyze properly."
    ),
    type=ThreatType.UNKNOWN_THREAT,
    confidence=0.5,
)


class InferenceWorkerProxy:
    """
    Runs analysis requests against one loaded model.

    Attributes:
        engine: Inference engine capability
        system_prompt: Fixed instructions that prefix every prompt
        reserved_tokens: Token length of system_prompt (the kept session prefix)
    """

    def __init__(
        self,
        engine: BaseInferenceEngine,
        system_prompt: str,
        settings: Settings,
        sampling: Optional[SamplingParams] = None,
    ):
        self.engine = engine
        self.system_prompt = system_prompt
        self.settings = settings
        self.sampling = sampling or SamplingParams(
            temperature=settings.SAMPLING_TEMPERATURE,
            top_k=settings.SAMPLING_TOP_K,
            top_p=settings.SAMPLING_TOP_P,
            min_p=settings.SAMPLING_MIN_P,
            max_tokens=settings.MAX_OUTPUT_TOKENS,
            grammar=ANALYSIS_GRAMMAR,
        )
        self.reserved_tokens = 0
        self._load_config: Optional[ModelLoadConfig] = None

    @property
    def context_size(self) -> Optional[int]:
        return self._load_config.n_ctx if self._load_config else None

    @property
    def is_loaded(self) -> bool:
        return self._load_config is not None

    async def load(
        self,
        snapshot: ResourceSnapshot,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ModelLoadConfig:
        """
        Size and load the model for the sampled resources.

        Args:
            snapshot: Resources reported by the orchestrator context
            progress_callback: Receives load percentage (called from the loader thread)

        Returns:
            Effective load configuration

        Raises:
            InsufficientResourcesError: No model fits (nothing is loaded)
            EngineError: Load failure
        """
        if self._load_config is not None:
            return self._load_config

        config = plan_model_load(snapshot, self.settings)
        try:
            await asyncio.to_thread(self.engine.load, config, progress_callback)
            tokens = await asyncio.to_thread(self.engine.tokenize, self.system_prompt)
        except EngineError:
            raise
        except Exception as e:
            raise classify_engine_error(e) from e

        self.reserved_tokens = len(tokens)
        self._load_config = config
        logger.info(
            "Model loaded",
            model=config.model_name,
            context_size=config.n_ctx,
            reserved_tokens=self.reserved_tokens,
        )
        return config

    def available_tokens(self, prompt_tokens: int) -> int:
        """Tokens left in the context window after the prompt."""
        return (self.context_size or 0) - prompt_tokens

    async def infer(self, request: RequestMessage) -> AnalysisResult:
        """
        Classify one request.

        Args:
            request: Request carrying the combined prompt

        Returns:
            AnalysisResult (possibly a synthesized unknown_threat)

        Raises:
            ModelNotLoadedError: load() has not completed
            EngineError: Completion or parsing failed on every attempt
        """
        if not self.is_loaded:
            raise ModelNotLoadedError("Model not loaded", details={"request_id": request.request_id})

        start = time.perf_counter()
        log = logger.bind(request_id=request.request_id)

        try:
            tokens = await asyncio.to_thread(self.engine.tokenize, request.prompt)
        except EngineError:
            raise
        except Exception as e:
            raise classify_engine_error(e) from e

        remaining = self.available_tokens(len(tokens))
        if remaining < self.settings.CONTEXT_RESERVE_FLOOR:
            log.warning(
                "Prompt exceeds context budget",
                prompt_tokens=len(tokens),
                context_size=self.context_size,
                reserved_tokens=self.reserved_tokens,
                remaining_tokens=remaining,
            )
            inference_latency_seconds.labels(outcome="too_long").observe(time.perf_counter() - start)
            return TOO_LONG_RESULT

        max_attempts = 1 + self.settings.INFERENCE_MAX_RETRIES
        for attempt in range(1, max_attempts + 1):
            try:
                result = await self._complete_once(request.prompt)
            except ContextOverflowError as e:
                log.warning("Context overflow during completion", error=e.message, attempt=attempt)
                inference_latency_seconds.labels(outcome="context_overflow").observe(
                    time.perf_counter() - start
                )
                return CONTEXT_LIMIT_RESULT
            except EngineError as e:
                if not e.retryable or attempt == max_attempts:
                    log.error(
                        "Inference failed",
                        error_kind=e.kind,
                        error=e.message,
                        attempts=attempt,
                    )
                    inference_latency_seconds.labels(outcome="error").observe(time.perf_counter() - start)
                    raise
                inference_retries_total.labels(error_kind=e.kind).inc()
                log.warning(
                    "Retrying inference",
                    error_kind=e.kind,
                    error=e.message,
                    attempt=attempt,
                    max_attempts=max_attempts,
                )
                continue

            log.info(
                "Inference completed",
                threat_type=result.type.value,
                confidence=result.confidence,
                attempts=attempt,
                prompt_tokens=len(tokens),
            )
            inference_latency_seconds.labels(outcome="completion").observe(time.perf_counter() - start)
            return result

        # Loop always returns or raises
        raise AssertionError("unreachable")

    async def _complete_once(self, prompt: str) -> AnalysisResult:
        try:
            text = await asyncio.to_thread(self.engine.complete, prompt, self.sampling)
        except EngineError:
            raise
        except Exception as e:
            raise classify_engine_error(e) from e
        finally:
            # Only the instruction prefix survives between emails
            self.engine.trim_session(self.reserved_tokens)
        return parse_analysis(text)

    def close(self) -> None:
        """Release the model."""
        self.engine.close()
        self._load_config = None
        self.reserved_tokens = 0
