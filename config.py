# config.py
"""Configuration settings for the tomewright book generation pipeline.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import structlog
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import MissingEnvVarError

load_dotenv()

logger = structlog.get_logger()

_DEFAULT_MODELS = {
    "anthropic": "claude-3-5-sonnet-20240620",
    "openai": "gpt-4o",
}


class TomewrightSettings(BaseSettings):
    """Full configuration for the generation pipeline."""

    # Provider configuration
    GENERATOR_PROVIDER: str = "anthropic"
    ANTHROPIC_API_BASE: str = "https://api.anthropic.com/v1"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_VERSION: str = "2023-06-01"
    OPENAI_API_BASE: str = "http://127.0.0.1:8080/v1"
    OPENAI_API_KEY: str | None = None
    GENERATOR_MODEL: str | None = None

    # Generation call settings
    MAX_GENERATION_TOKENS: int = 8192
    TEMPERATURE_DEFAULT: float = 0.7
    HTTPX_TIMEOUT: float = 600.0
    MAX_CONCURRENT_GENERATOR_CALLS: int = 1
    TIKTOKEN_DEFAULT_ENCODING: str = "cl100k_base"
    FALLBACK_CHARS_PER_TOKEN: float = 4.0

    # Overload retry
    GENERATOR_MAX_RETRIES: int = 5
    GENERATOR_RETRY_INITIAL_DELAY_SECONDS: float = 1.0
    GENERATOR_RETRY_MAX_DELAY_SECONDS: float = 60.0

    # Availability probe
    AVAILABILITY_CHECK_INTERVAL_SECONDS: float = 30.0
    AVAILABILITY_DOWN_CHECK_INTERVAL_SECONDS: float = 5.0
    AVAILABILITY_STATUS_TTL_SECONDS: float = 10.0
    AVAILABILITY_WAIT_MAX_DELAY_SECONDS: float = 30.0
    AVAILABILITY_WAIT_TIMEOUT_SECONDS: float = 300.0

    # Pipeline limits
    MAX_CHAPTERS: int = 20
    MAX_CONTENT_LENGTH: int = 17000
    SUMMARY_CACHE_DURATION: int = 86400
    COMPLETION_THRESHOLD: float = 0.8
    RUN_TIMEOUT_SECONDS: float | None = None

    # Output
    BASE_OUTPUT_DIR: str = "output"
    LOG_RETENTION_DAYS: int = 7

    # Cost accounting (USD per million tokens)
    INPUT_COST_PER_MILLION: float = 3.0
    OUTPUT_COST_PER_MILLION: float = 15.0

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="TOMEWRIGHT_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "tomewright_run.log"
    ENABLE_RICH_PROGRESS: bool = True

    @model_validator(mode="after")
    def set_provider_defaults(self) -> TomewrightSettings:
        provider = self.GENERATOR_PROVIDER.lower()
        if provider not in _DEFAULT_MODELS:
            logger.warning(
                "Unknown generator provider; using OpenAI-compatible requests.",
                provider=self.GENERATOR_PROVIDER,
            )
            provider = "openai"
        self.GENERATOR_PROVIDER = provider
        if self.GENERATOR_MODEL is None:
            self.GENERATOR_MODEL = _DEFAULT_MODELS[provider]
        return self

    @property
    def api_key(self) -> str | None:
        if self.GENERATOR_PROVIDER == "anthropic":
            return self.ANTHROPIC_API_KEY
        return self.OPENAI_API_KEY

    @property
    def api_base(self) -> str:
        if self.GENERATOR_PROVIDER == "anthropic":
            return self.ANTHROPIC_API_BASE.rstrip("/")
        return self.OPENAI_API_BASE.rstrip("/")

    def require_api_key(self) -> str:
        """Return the configured key for the active provider or raise."""
        key = self.api_key
        if not key:
            var_name = (
                "ANTHROPIC_API_KEY"
                if self.GENERATOR_PROVIDER == "anthropic"
                else "OPENAI_API_KEY"
            )
            raise MissingEnvVarError(var_name)
        return key

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", populate_by_name=True, extra="ignore"
    )


settings = TomewrightSettings()
