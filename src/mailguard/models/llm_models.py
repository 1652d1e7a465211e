"""
Engine-facing models for model loading and constrained completion.

These models are internal to the worker and describe how the opaque
inference engine is configured. They are separate from the wire models so
the engine adapter can change without touching the channel protocol.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ModelSpec(BaseModel):
    """
    Static description of one supported model.

    Memory figures are estimates used by sizing: resident weights plus a
    per-token cost for the KV cache and logits.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Model identifier (e.g., 'gemma-3-4b-it-q4_0')")
    filename: str = Field(..., description="GGUF file name under MODELS_DIR")
    resident_mb: int = Field(..., ge=0, description="Estimated resident size of the weights")
    per_token_mb: float = Field(..., gt=0, description="Estimated memory per context token")
    min_context: int = Field(default=2048, ge=1)
    max_context: int = Field(default=8192, ge=1)
    thread_fraction: float = Field(..., gt=0, le=1, description="Share of CPU threads to use")
    min_threads: int = Field(default=2, ge=1)
    max_threads: int = Field(..., ge=1)

    def required_memory_mb(self, safety_margin_mb: int) -> int:
        """Memory needed to run this model at its minimum context window."""
        return int(round(self.resident_mb + self.min_context * self.per_token_mb + safety_margin_mb))


class ModelLoadConfig(BaseModel):
    """Resource-aware load parameters chosen by sizing."""

    model_config = ConfigDict(frozen=True)

    model_name: str
    model_path: str
    n_ctx: int = Field(..., ge=1, description="Context window in tokens")
    n_threads: int = Field(..., ge=1)
    n_batch: int = Field(..., ge=1)


class SamplingParams(BaseModel):
    """Fixed sampling parameters for structured output."""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=1.0, ge=0.0, le=2.0)
    top_k: int = Field(default=64, ge=0)
    top_p: float = Field(default=0.95, ge=0.0, le=1.0)
    min_p: float = Field(default=0.01, ge=0.0, le=1.0)
    max_tokens: int = Field(default=256, ge=1)
    grammar: Optional[str] = Field(default=None, description="GBNF grammar constraining the output")
