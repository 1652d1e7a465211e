"""
llama.cpp inference engine via llama-cpp-python.

Loads a GGUF model into the worker process and runs grammar-constrained
completions. Requires the optional ``llamacpp`` extra.
"""

from pathlib import Path
from typing import Optional

import structlog
from llama_cpp import Llama, LlamaGrammar

from mailguard.llm.base_engine import BaseInferenceEngine, ProgressCallback
from mailguard.llm.exceptions import (
    EngineFailureError,
    ModelNotLoadedError,
    classify_engine_error,
)
from mailguard.models.llm_models import ModelLoadConfig, SamplingParams


logger = structlog.get_logger(__name__)


class LlamaCppEngine(BaseInferenceEngine):
    """
    llama-cpp-python engine.

    Session trimming relies on llama-cpp-python's prefix reuse: lowering
    ``n_tokens`` marks the suffix of the KV cache as stale, and the next
    evaluation removes it while keeping the shared instruction prefix.
    """

    def __init__(self):
        super().__init__()
        self._llama: Optional[Llama] = None
        self._grammars: dict[str, LlamaGrammar] = {}

    def load(self, config: ModelLoadConfig, progress_callback: Optional[ProgressCallback] = None) -> None:
        model_path = Path(config.model_path)
        if not model_path.exists():
            raise EngineFailureError(
                f"Model file not found: {model_path}",
                details={"model": config.model_name, "path": str(model_path)},
            )

        if progress_callback:
            progress_callback(0)

        logger.info(
            "Loading GGUF model",
            model=config.model_name,
            n_ctx=config.n_ctx,
            n_threads=config.n_threads,
            n_batch=config.n_batch,
        )
        try:
            self._llama = Llama(
                model_path=str(model_path),
                n_ctx=config.n_ctx,
                n_threads=config.n_threads,
                n_batch=config.n_batch,
                n_gpu_layers=0,
                verbose=False,
            )
        except (ValueError, RuntimeError, OSError) as e:
            raise EngineFailureError(
                f"Failed to load model {config.model_name}: {e}",
                details={"model": config.model_name, "error_type": type(e).__name__},
            ) from e

        self._load_config = config
        if progress_callback:
            progress_callback(100)

    def _require_model(self) -> Llama:
        if self._llama is None:
            raise ModelNotLoadedError("Model not loaded")
        return self._llama

    def tokenize(self, text: str) -> list[int]:
        llama = self._require_model()
        return llama.tokenize(text.encode("utf-8"), add_bos=True, special=True)

    def _grammar(self, source: str) -> LlamaGrammar:
        grammar = self._grammars.get(source)
        if grammar is None:
            grammar = LlamaGrammar.from_string(source, verbose=False)
            self._grammars[source] = grammar
        return grammar

    def complete(self, prompt: str, sampling: SamplingParams) -> str:
        llama = self._require_model()
        grammar = self._grammar(sampling.grammar) if sampling.grammar else None
        try:
            output = llama.create_completion(
                prompt,
                max_tokens=sampling.max_tokens,
                temperature=sampling.temperature,
                top_k=sampling.top_k,
                top_p=sampling.top_p,
                min_p=sampling.min_p,
                grammar=grammar,
            )
        except (ValueError, RuntimeError) as e:
            raise classify_engine_error(e) from e
        return output["choices"][0]["text"]

    def trim_session(self, n_tokens: int) -> None:
        if self._llama is None:
            return
        self._llama.n_tokens = min(self._llama.n_tokens, max(0, n_tokens))

    def close(self) -> None:
        if self._llama is not None:
            self._llama.close()
            self._llama = None
        self._grammars.clear()
        super().close()
