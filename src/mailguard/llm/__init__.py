"""
Inference engine abstraction.

Components:
- BaseInferenceEngine: Abstract engine capability (load/tokenize/complete/trim)
- LlamaCppEngine: llama-cpp-python implementation (optional extra, selected by
  WORKER_ENGINE and imported lazily through load_engine_factory)
- output_parser: GBNF grammar, JSON Schema, and completion parser
- exceptions: Typed engine errors
"""

from mailguard.llm.base_engine import BaseInferenceEngine
from mailguard.llm.exceptions import (
    ContextOverflowError,
    EngineError,
    EngineFailureError,
    InsufficientResourcesError,
    ModelNotLoadedError,
    OutputParseError,
    classify_engine_error,
)
from mailguard.llm.output_parser import ANALYSIS_GRAMMAR, ANALYSIS_SCHEMA, parse_analysis

__all__ = [
    "BaseInferenceEngine",
    "EngineError",
    "ModelNotLoadedError",
    "ContextOverflowError",
    "OutputParseError",
    "InsufficientResourcesError",
    "EngineFailureError",
    "classify_engine_error",
    "ANALYSIS_GRAMMAR",
    "ANALYSIS_SCHEMA",
    "parse_analysis",
]
