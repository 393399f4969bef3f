"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Validates required settings on import — fails
fast if critical vars are missing outside of tests.
"""

VERSION = "0.1.0"

import sys

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Required var names, checked after instantiation (not during) so tests
# that leave them blank still work.
# ---------------------------------------------------------------------------
_REQUIRED_VARS: list[str] = [
    "DATABASE_URL",
    "JWT_SECRET",
]


class Settings(BaseSettings):
    """Application settings — sourced from environment / ``.env`` file.

    Required vars (must be set in production, may be blank in test):
      DATABASE_URL, JWT_SECRET
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- required in production (default empty so tests don't fail) --
    DATABASE_URL: str = ""
    JWT_SECRET: str = ""

    # -- optional with sensible defaults --
    FRONTEND_URL: str = "http://localhost:5173"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # -------------------------------------------------------------------------
    # Security reviewer endpoint.
    #
    #   LLM_PROVIDER = "anthropic" (default) | "openai"
    #
    # Every batch is one request.  Transport failures, timeouts and 429/5xx
    # answers are retried LLM_MAX_RETRIES times, waiting
    # LLM_RETRY_BACKOFF_SECONDS * attempt between tries (linear).
    # -------------------------------------------------------------------------
    LLM_PROVIDER: str = "anthropic"
    ANTHROPIC_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    LLM_SCAN_MODEL: str = "claude-sonnet-4-6"
    LLM_SCAN_MAX_TOKENS: int = 4000
    LLM_SCAN_TEMPERATURE: float = 0.1
    LLM_TIMEOUT_SECONDS: float = Field(default=120.0, gt=0)
    LLM_MAX_RETRIES: int = Field(default=3, ge=0)
    LLM_RETRY_BACKOFF_SECONDS: float = Field(default=2.0, ge=0)

    # -- VCS providers --
    PROVIDER_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    # GitHub stops listing PR files at 3000 entries (30 pages of 100), so 30
    # pages drains any real PR while still stopping a misbehaving API.
    PROVIDER_MAX_PAGES: int = Field(default=30, ge=1)
    PROVIDER_FETCH_CONCURRENCY: int = Field(default=8, ge=1)
    SCAN_BASE_BRANCH: str = "main"

    # -- batching / scheduling --
    SCAN_MAX_BATCH_BYTES: int = Field(default=60_000, ge=1)
    SCAN_MAX_FILES_PER_BATCH: int = Field(default=5, ge=1)        # full-content mode
    SCAN_MAX_FILES_PER_DIFF_BATCH: int = Field(default=10, ge=1)  # diff-only (PR) mode
    SCAN_WINDOW_SIZE: int = Field(default=3, ge=1)
    SCAN_DEADLINE_MINUTES: int = Field(default=30, ge=0)          # 0 = no deadline

    # -- progress milestones (percent) --
    PROGRESS_FILES_DISCOVERED: int = Field(default=25, ge=0, le=100)
    PROGRESS_ANALYSIS_CEILING: int = Field(default=95, ge=0, le=99)

    @model_validator(mode="after")
    def _check_milestones(self) -> "Settings":
        """The analysis phase must have room between its two milestones."""
        if self.PROGRESS_ANALYSIS_CEILING < self.PROGRESS_FILES_DISCOVERED:
            raise ValueError(
                "PROGRESS_ANALYSIS_CEILING must not be below PROGRESS_FILES_DISCOVERED"
            )
        return self


settings = Settings()


def get_llm_api_key() -> str:
    """Return the API key for the configured reviewer provider."""
    if settings.LLM_PROVIDER == "openai":
        return settings.OPENAI_API_KEY
    return settings.ANTHROPIC_API_KEY


# Validate at import time, but only when NOT running under pytest.
if "pytest" not in sys.modules:
    _missing = [v for v in _REQUIRED_VARS if not getattr(settings, v)]
    if _missing:
        print(
            f"[config] FATAL: missing required environment variables: "
            f"{', '.join(_missing)}",
            file=sys.stderr,
        )
        sys.exit(1)
