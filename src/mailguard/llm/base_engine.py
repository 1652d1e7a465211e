"""
Abstract base for local inference engines.

The engine is an opaque capability owned by the worker process: load a
model, tokenize text, run a grammar-constrained completion, and trim its
session state. This abstraction lets the worker proxy stay independent of
llama.cpp (or any other runtime) and lets tests script engine behavior.
"""

import importlib
from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog

from mailguard.models.llm_models import ModelLoadConfig, SamplingParams


logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int], None]


class BaseInferenceEngine(ABC):
    """
    Abstract base class for inference engines.

    All methods are blocking; the worker proxy runs them in a thread so the
    worker's event loop keeps serving control messages.

    Responsibilities:
    - Load model weights with the sized configuration
    - Tokenize prompts for budget checks
    - Run constrained completion
    - Keep only a fixed prefix of session state between requests

    Does NOT handle:
    - Model selection and sizing (that's sizing.plan_model_load's job)
    - Retries and budget decisions (that's InferenceWorkerProxy's job)
    - Output parsing (that's output_parser's job)
    """

    def __init__(self):
        self._load_config: Optional[ModelLoadConfig] = None

    @property
    def is_loaded(self) -> bool:
        return self._load_config is not None

    @property
    def load_config(self) -> Optional[ModelLoadConfig]:
        return self._load_config

    @abstractmethod
    def load(self, config: ModelLoadConfig, progress_callback: Optional[ProgressCallback] = None) -> None:
        """
        Load the model described by config.

        Args:
            config: Sized load parameters
            progress_callback: Called with a 0-100 percentage while loading

        Raises:
            EngineFailureError: Weights missing or runtime failure
        """

    @abstractmethod
    def tokenize(self, text: str) -> list[int]:
        """
        Tokenize text with the loaded model's vocabulary.

        Raises:
            ModelNotLoadedError: No model loaded
        """

    @abstractmethod
    def complete(self, prompt: str, sampling: SamplingParams) -> str:
        """
        Run a single completion for prompt and return the generated text.

        Raises:
            ModelNotLoadedError: No model loaded
            ContextOverflowError: Prompt does not fit the context window
            EngineFailureError: Any other runtime failure
        """

    @abstractmethod
    def trim_session(self, n_tokens: int) -> None:
        """Discard session state beyond the first n_tokens tokens."""

    def close(self) -> None:
        """Release model memory. Default implementation forgets the config."""
        logger.debug("Closing inference engine", engine_class=self.__class__.__name__)
        self._load_config = None

    def __repr__(self) -> str:
        model = self._load_config.model_name if self._load_config else None
        return f"{self.__class__.__name__}(model={model})"


EngineFactory = Callable[[], BaseInferenceEngine]


def load_engine_factory(path: str) -> EngineFactory:
    """
    Resolve a ``"package.module:Name"`` path to an engine factory.

    The module is imported on call, so optional engine runtimes are only
    needed where an engine is actually built.

    Raises:
        ValueError: path is not in module:attribute form
        ImportError / AttributeError: the target does not exist
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Engine path must look like 'package.module:Name', got {path!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    logger.debug("Resolved engine factory", engine=path)
    return factory
