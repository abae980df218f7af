"""
Runtime settings and ritual tuning.

Two sources:

* ``Settings``: process environment (and ``.env``), for paths, the AI
  gateway, optional cloud sync and the HTTP server.
* ``RitualConfig``: ``config/ritual_config.yaml``, for session expiry,
  history size, circuit breaker and somatic thresholds.
"""

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RITUAL_CONFIG = "ritual_config.yaml"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # storage
    storage_backend: Literal["sqlite", "memory"] = Field(
        default="sqlite",
        description="Local storage backend (memory keeps nothing across restarts)",
    )
    database_path: Path = Field(
        default=Path("data/serenis.db"),
        description="SQLite file backing the key-value store",
    )

    # AI gateway: one OpenAI-compatible endpoint for questions and summaries.
    # Without LLM_API_KEY only static questions are served.
    ai_enabled: bool = True
    llm_base_url: str = "https://ai.gateway.lovable.dev/v1"
    llm_model: str = "google/gemini-3-flash-preview"
    llm_api_key: Optional[str] = None
    llm_timeout: float = Field(default=20.0, gt=0, le=120, description="Seconds per attempt")
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    # cloud sync, disabled unless both are set
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None

    # HTTP server
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    debug: bool = False

    @property
    def llm_configured(self) -> bool:
        return self.ai_enabled and bool(self.llm_api_key)

    @property
    def sync_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


class SessionLifecycleConfig(BaseModel):
    """Local session lifecycle configuration."""

    expiry_days: int = Field(
        default=7, ge=1, le=365, description="Days before a stored session expires"
    )
    history_limit: int = Field(
        default=50, ge=1, le=500, description="Maximum completed sessions kept"
    )


class AIConfig(BaseModel):
    """AI question generation policy."""

    max_retries_per_phase: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Consecutive failures before the circuit breaker trips",
    )


class SomaticConfig(BaseModel):
    """Somatic break thresholds."""

    intensity_jump_threshold: int = Field(default=2, ge=1, le=10)
    high_intensity_threshold: int = Field(default=8, ge=1, le=10)
    max_breaks: int = Field(default=3, ge=0, le=20)


class TelemetryConfig(BaseModel):
    """Local telemetry configuration."""

    enabled: bool = True
    max_events: int = Field(default=500, ge=1, le=10000)


class RitualConfig(BaseModel):
    """
    Complete ritual configuration loaded from ritual_config.yaml.

    Every section has defaults so a missing or partial file still yields a
    usable configuration.
    """

    session: SessionLifecycleConfig = Field(default_factory=SessionLifecycleConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    somatic: SomaticConfig = Field(default_factory=SomaticConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @field_validator("somatic")
    @classmethod
    def high_threshold_within_scale(cls, v: SomaticConfig) -> SomaticConfig:
        if v.intensity_jump_threshold >= v.high_intensity_threshold:
            raise ValueError(
                "intensity_jump_threshold must be lower than high_intensity_threshold"
            )
        return v


def _find_ritual_config() -> Optional[Path]:
    for root in (Path(__file__).resolve().parents[2], Path.cwd()):
        candidate = root / "config" / DEFAULT_RITUAL_CONFIG
        if candidate.is_file():
            return candidate
    return None


def load_ritual_config(config_path: Optional[Path] = None) -> RitualConfig:
    """Read ritual tuning from YAML; a missing or empty file gives the defaults.

    Raises:
        pydantic.ValidationError: If a value is out of range
    """
    path = Path(config_path) if config_path is not None else _find_ritual_config()
    if path is None or not path.is_file():
        return RitualConfig()

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return RitualConfig.model_validate(raw)


settings = Settings()
ritual_config = load_ritual_config()
