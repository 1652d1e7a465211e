"""
Unit tests for resource-aware model sizing.
"""

import pytest

from mailguard.llm.exceptions import InsufficientResourcesError
from mailguard.models.resources import ResourceSnapshot
from mailguard.worker.sizing import MODEL_CATALOG, plan_model_load


def snapshot(available: int, cpu_threads: int = 8) -> ResourceSnapshot:
    return ResourceSnapshot(available_memory_mb=available, total_memory_mb=32000, cpu_threads=cpu_threads)


def test_largest_model_when_memory_is_plentiful(test_settings):
    config = plan_model_load(snapshot(16000), test_settings)

    assert config.model_name == MODEL_CATALOG[0].name
    assert config.n_ctx == 8192
    assert config.n_threads == 4  # 8 * 0.5
    assert config.n_batch == 512
    assert config.model_path.endswith(MODEL_CATALOG[0].filename)


def test_falls_back_to_smaller_model(test_settings):
    # 4b needs 2360 + 2048 * 0.5 + 1024 = 4408MB
    config = plan_model_load(snapshot(2500), test_settings)

    assert config.model_name == MODEL_CATALOG[1].name
    # (2500 - 1024 - 720) / 0.15 = 5040 -> aligned down to 4608
    assert config.n_ctx == 4608
    assert config.n_threads == 6  # 8 * 0.75
    assert config.n_batch == 288  # 4608 / 16


def test_context_window_is_aligned_and_clamped(test_settings):
    config = plan_model_load(snapshot(5000), test_settings)

    # (5000 - 1024 - 2360) / 0.5 = 3232 -> 3072
    assert config.model_name == MODEL_CATALOG[0].name
    assert config.n_ctx == 3072
    assert config.n_ctx % test_settings.CONTEXT_ALIGNMENT == 0
    assert config.n_batch == 256  # 3072 / 16 = 192, clamped up


def test_thread_count_is_clamped(test_settings):
    assert plan_model_load(snapshot(16000, cpu_threads=2), test_settings).n_threads == 2
    assert plan_model_load(snapshot(16000, cpu_threads=64), test_settings).n_threads == 6


def test_insufficient_resources_reports_smallest_requirement(test_settings):
    with pytest.raises(InsufficientResourcesError) as exc_info:
        plan_model_load(snapshot(1500), test_settings)

    smallest = MODEL_CATALOG[1]
    assert exc_info.value.required_memory_mb == smallest.required_memory_mb(1024)
    assert exc_info.value.available_memory_mb == 1500


def test_safety_margin_is_honored(test_settings):
    strict = test_settings.model_copy(update={"MODEL_SAFETY_MARGIN_MB": 4000})

    with pytest.raises(InsufficientResourcesError):
        plan_model_load(snapshot(4500), strict)
