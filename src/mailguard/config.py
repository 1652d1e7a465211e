"""
Configuration settings for the mail threat scanner.

All settings are loaded from environment variables with sensible defaults.
Use .env file for local development. Values are read once at process start;
the orchestration timings are not adjustable at runtime.
"""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PROMPTS_DIR = str(Path(__file__).parent / "prompts")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Application ===
    APP_NAME: str = "Mail Threat Scanner"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # === Orchestration ===
    MAX_CONCURRENCY: int = 1  # Strict serialization, one model in memory
    IDLE_TEARDOWN_SECONDS: float = 60.0
    MODEL_READY_POLL_SECONDS: float = 0.1
    RESOURCE_POLL_SECONDS: float = 5.0
    RECONNECT_BACKOFF_SECONDS: float = 1.0

    # === Worker ===
    WORKER_MODE: str = "subprocess"  # "subprocess" or "inprocess"
    WORKER_ENGINE: str = "mailguard.llm.llamacpp_engine:LlamaCppEngine"  # module:factory building the engine
    MODELS_DIR: str = "models"
    MODEL_SAFETY_MARGIN_MB: int = 1024
    CONTEXT_ALIGNMENT: int = 512
    CONTEXT_RESERVE_FLOOR: int = 50  # Tokens that must remain free after the prompt
    INFERENCE_MAX_RETRIES: int = 1
    MAX_OUTPUT_TOKENS: int = 256

    # === Sampling (tuned for low-variance structured output) ===
    SAMPLING_TEMPERATURE: float = 1.0
    SAMPLING_TOP_K: int = 64
    SAMPLING_TOP_P: float = 0.95
    SAMPLING_MIN_P: float = 0.01

    # === Prompts ===
    PROMPT_TEMPLATES_DIR: str = DEFAULT_PROMPTS_DIR

    # === Fingerprint Cache (Redis) ===
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 10
    CACHE_KEY_PREFIX: str = "mailguard:analysis:"

    # === Monitoring ===
    PROMETHEUS_ENABLED: bool = True

    @field_validator("MAX_CONCURRENCY")
    @classmethod
    def _single_flight_only(cls, value: int) -> int:
        # Only one loaded model fits the memory budget; N-worker pools are not supported.
        if value != 1:
            raise ValueError("MAX_CONCURRENCY is fixed at 1")
        return value

    @field_validator("WORKER_MODE")
    @classmethod
    def _known_worker_mode(cls, value: str) -> str:
        value = value.lower()
        if value not in ("subprocess", "inprocess"):
            raise ValueError(f"Unknown WORKER_MODE: {value}")
        return value


# Global settings instance
settings = Settings()
