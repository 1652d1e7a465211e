"""
Resource-aware model selection and load parameters.

Sizing runs once per load, against a ResourceSnapshot sampled by the
orchestrator context:

1. Pick the largest catalog model whose resident size, minimum context
   cost and safety margin fit in available memory.
2. Context window = memory left after weights and margin / per-token cost,
   rounded down to the alignment granularity, clamped to the model range.
3. Threads = a model-specific fraction of CPU threads, clamped.
4. Batch = context / 16, clamped to [256, 512].

If nothing fits, InsufficientResourcesError carries the smallest model's
requirement so the lifecycle manager knows when to retry.
"""

from pathlib import Path

import structlog

from mailguard.config import Settings
from mailguard.llm.exceptions import InsufficientResourcesError
from mailguard.models.llm_models import ModelLoadConfig, ModelSpec
from mailguard.models.resources import ResourceSnapshot

logger = structlog.get_logger(__name__)

# Largest first
MODEL_CATALOG: tuple[ModelSpec, ...] = (
    ModelSpec(
        name="gemma-3-4b-it-qat-q4_0",
        filename="gemma-3-4b-it-qat-q4_0.gguf",
        resident_mb=2360,
        per_token_mb=0.5,
        thread_fraction=0.5,
        max_threads=6,
    ),
    ModelSpec(
        name="gemma-3-1b-it-qat-q4_0",
        filename="gemma-3-1b-it-qat-q4_0.gguf",
        resident_mb=720,
        per_token_mb=0.15,
        thread_fraction=0.75,
        max_threads=8,
    ),
)

BATCH_DIVISOR = 16
MIN_BATCH = 256
MAX_BATCH = 512


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def context_window_for(spec: ModelSpec, available_mb: int, safety_margin_mb: int, alignment: int) -> int:
    """Largest aligned context window that fits next to the weights."""
    remaining_mb = available_mb - safety_margin_mb - spec.resident_mb
    tokens = int(remaining_mb / spec.per_token_mb) if remaining_mb > 0 else 0
    aligned = (tokens // alignment) * alignment
    return _clamp(aligned, spec.min_context, spec.max_context)


def plan_model_load(
    snapshot: ResourceSnapshot,
    settings: Settings,
    catalog: tuple[ModelSpec, ...] = MODEL_CATALOG,
) -> ModelLoadConfig:
    """
    Choose a model and its load parameters for the sampled resources.

    Args:
        snapshot: Sampled host resources
        settings: Application settings (margin, alignment, models dir)
        catalog: Supported models, largest first

    Returns:
        ModelLoadConfig for the selected model

    Raises:
        InsufficientResourcesError: No model fits in available memory
    """
    margin = settings.MODEL_SAFETY_MARGIN_MB
    available = snapshot.available_memory_mb

    for spec in catalog:
        required = spec.required_memory_mb(margin)
        if available < required:
            logger.debug(
                "Model does not fit",
                model=spec.name,
                required_memory_mb=required,
                available_memory_mb=available,
            )
            continue

        n_ctx = context_window_for(spec, available, margin, settings.CONTEXT_ALIGNMENT)
        n_threads = _clamp(int(snapshot.cpu_threads * spec.thread_fraction), spec.min_threads, spec.max_threads)
        n_batch = _clamp(n_ctx // BATCH_DIVISOR, MIN_BATCH, MAX_BATCH)

        config = ModelLoadConfig(
            model_name=spec.name,
            model_path=str(Path(settings.MODELS_DIR) / spec.filename),
            n_ctx=n_ctx,
            n_threads=n_threads,
            n_batch=n_batch,
        )
        logger.info(
            "Selected model",
            model=spec.name,
            n_ctx=n_ctx,
            n_threads=n_threads,
            n_batch=n_batch,
            available_memory_mb=available,
            total_memory_mb=snapshot.total_memory_mb,
            cpu_threads=snapshot.cpu_threads,
        )
        return config

    smallest = min(catalog, key=lambda s: s.required_memory_mb(margin))
    required = smallest.required_memory_mb(margin)
    logger.warning(
        "No supported model fits in available memory",
        required_memory_mb=required,
        available_memory_mb=available,
    )
    raise InsufficientResourcesError(required, available, details={"model": smallest.name})
