"""Shared test fixtures and configuration for all tests.

This conftest.py provides common fixtures used across unit and integration tests.
"""

from pathlib import Path

import pytest

from mailguard.config import DEFAULT_PROMPTS_DIR, Settings
from mailguard.llm.prompt_builder import PromptBuilder
from mailguard.models.email import EmailContent
from tests.fixtures.fakes import EngineRecorder, FakeAsyncRedis, StaticSampler


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with short timings and an in-process worker.

    Override specific settings in individual tests with model_copy(update=...).
    """
    return Settings(
        # === Application ===
        APP_NAME="Mail Threat Scanner (Test)",
        DEBUG=True,
        LOG_LEVEL="DEBUG",
        ENVIRONMENT="development",

        # === Orchestration ===
        IDLE_TEARDOWN_SECONDS=0.3,
        MODEL_READY_POLL_SECONDS=0.01,
        RESOURCE_POLL_SECONDS=0.05,
        RECONNECT_BACKOFF_SECONDS=0.05,

        # === Worker ===
        WORKER_MODE="inprocess",
        MODELS_DIR="/nonexistent/models",
        MODEL_SAFETY_MARGIN_MB=1024,
        CONTEXT_ALIGNMENT=512,
        CONTEXT_RESERVE_FLOOR=50,
        INFERENCE_MAX_RETRIES=1,

        # === Prompts / cache / monitoring ===
        PROMPT_TEMPLATES_DIR=DEFAULT_PROMPTS_DIR,
        REDIS_URL="redis://localhost:6379/15",
        CACHE_KEY_PREFIX="mailguard:test:",
        PROMETHEUS_ENABLED=False,
    )


@pytest.fixture
def prompt_builder(test_settings: Settings) -> PromptBuilder:
    return PromptBuilder(templates_dir=Path(test_settings.PROMPT_TEMPLATES_DIR))


@pytest.fixture
def phishing_email() -> EmailContent:
    return EmailContent(
        subject="Urgent: verify your account",
        body="Your mailbox will be suspended. Click the link below to verify your password.",
        sender="Security@Examp1e-Bank.com",
        urls=["http://examp1e-bank.com/verify"],
    )


@pytest.fixture
def newsletter_email() -> EmailContent:
    return EmailContent(
        subject="Weekly digest",
        body="Here are this week's top stories from the team blog.",
        sender="news@example.org",
        urls=["https://example.org/blog"],
    )


@pytest.fixture
def fake_redis() -> FakeAsyncRedis:
    return FakeAsyncRedis()


@pytest.fixture
def sampler() -> StaticSampler:
    """Plenty of memory: the largest model fits."""
    return StaticSampler(available_memory_mb=16000)


@pytest.fixture
def engine_recorder() -> EngineRecorder:
    return EngineRecorder()
