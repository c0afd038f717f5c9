"""
Settings for the trust-check service.

All values can be overridden through environment variables prefixed with
``TRUSTCHECK_`` or a local ``.env`` file. Numeric ceilings and stage budgets
are deployment knobs, not fixed product contracts.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeploymentMode(str, Enum):
    """Where the service is running."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StoreBackend(str, Enum):
    """Which JobStore implementation backs the service."""
    MEMORY = "memory"
    DATABASE = "database"


TRANSCRIPT_STRATEGIES = ("captions", "remote_worker", "local_audio")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8",
        env_prefix="TRUSTCHECK_", case_sensitive=False, extra="ignore",
    )

    # ── Deployment ───────────────────────────────────────────────────────
    deployment_mode: DeploymentMode = DeploymentMode.DEVELOPMENT
    log_level: LogLevel = LogLevel.INFO
    cors_origins: List[str] = ["*"]

    # ── Store ────────────────────────────────────────────────────────────
    store_backend: StoreBackend = StoreBackend.DATABASE
    database_url: str = "sqlite+aiosqlite:///data/trustcheck.db"

    # ── Execution budgets (seconds) ──────────────────────────────────────
    host_execution_ceiling_seconds: float = 300.0
    timeout_buffer_seconds: float = 30.0
    metadata_timeout: float = 20.0
    caption_timeout: float = 15.0
    remote_worker_timeout: float = 240.0
    local_audio_timeout: float = 240.0
    analysis_timeout: float = 120.0
    persistence_timeout: float = 30.0
    enrichment_timeout: float = 5.0

    # ── Product ceilings ─────────────────────────────────────────────────
    max_video_duration_minutes: int = 120
    remote_worker_max_duration_minutes: int = 180
    max_audio_bytes: int = 20 * 1024 * 1024
    max_upload_bytes: int = 24 * 1024 * 1024
    segment_seconds: int = 600
    transcribe_concurrency: int = 3
    transcript_char_budget: int = 20000

    # ── Retries ──────────────────────────────────────────────────────────
    caption_max_attempts: int = 3
    caption_retry_delay: float = 1.0
    download_attempt_timeout: float = 20.0
    download_retry_delay: float = 0.5

    # ── Transcript strategy order ────────────────────────────────────────
    transcript_strategies: List[str] = Field(default_factory=lambda: list(TRANSCRIPT_STRATEGIES))

    # ── LLM ──────────────────────────────────────────────────────────────
    openai_api_key: Optional[str] = None
    ai_model: str = "gpt-4o-mini"
    ai_fallback_model: str = "gpt-3.5-turbo"
    ai_temperature: float = 0.3
    transcription_model: str = "whisper-1"

    # ── Remote transcription worker ──────────────────────────────────────
    remote_worker_url: Optional[str] = None
    remote_worker_token: Optional[str] = None

    # ── Metadata ─────────────────────────────────────────────────────────
    youtube_api_key: Optional[str] = None
    youtube_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    youtube_cookie_file: Optional[str] = None

    # ── Task runner ──────────────────────────────────────────────────────
    worker_concurrency: int = 2
    queue_max_size: int = 100

    # ── Maintenance ──────────────────────────────────────────────────────
    stale_running_minutes: int = 15
    stale_pending_minutes: int = 5

    @field_validator("transcript_strategies")
    @classmethod
    def _known_strategies(cls, value: List[str]) -> List[str]:
        unknown = [name for name in value if name not in TRANSCRIPT_STRATEGIES]
        if unknown:
            raise ValueError(f"Unknown transcript strategies: {', '.join(unknown)}")
        return value

    @property
    def job_timeout_seconds(self) -> float:
        """Global run budget, kept strictly below the host ceiling."""
        return max(self.host_execution_ceiling_seconds - self.timeout_buffer_seconds, 1.0)

    @property
    def max_video_duration_seconds(self) -> int:
        return self.max_video_duration_minutes * 60


@lru_cache()
def get_settings() -> Settings:
    return Settings()
