"""Tests for configuration module."""

import os

import pytest
from pydantic import ValidationError


def test_settings_defaults():
    """Settings have sensible defaults."""
    from serenis.core.config import Settings

    s = Settings(_env_file=None)

    assert s.storage_backend == "sqlite"
    assert s.llm_timeout == 20.0
    assert s.llm_api_key is None
    assert s.llm_configured is False
    assert s.sync_configured is False


def test_settings_from_env():
    """Settings can be overridden via environment variables."""
    os.environ["STORAGE_BACKEND"] = "memory"
    os.environ["LLM_API_KEY"] = "env-key"

    try:
        from serenis.core.config import Settings

        s = Settings(_env_file=None)

        assert s.storage_backend == "memory"
        assert s.llm_api_key == "env-key"
        assert s.llm_configured is True
    finally:
        del os.environ["STORAGE_BACKEND"]
        del os.environ["LLM_API_KEY"]


def test_ai_disabled_overrides_key():
    from serenis.core.config import Settings

    s = Settings(_env_file=None, llm_api_key="key", ai_enabled=False)
    assert s.llm_configured is False


def test_sync_needs_url_and_key():
    from serenis.core.config import Settings

    assert not Settings(_env_file=None, supabase_url="https://x.supabase.co").sync_configured
    assert Settings(
        _env_file=None, supabase_url="https://x.supabase.co", supabase_anon_key="anon"
    ).sync_configured


def test_settings_validation():
    """Settings validate constraints."""
    from serenis.core.config import Settings

    with pytest.raises(ValidationError):
        Settings(_env_file=None, llm_temperature=3.0)

    with pytest.raises(ValidationError):
        Settings(_env_file=None, storage_backend="redis")


class TestRitualConfig:
    def test_defaults(self):
        from serenis.core.config import RitualConfig

        config = RitualConfig()

        assert config.session.expiry_days == 7
        assert config.session.history_limit == 50
        assert config.ai.max_retries_per_phase == 2
        assert config.telemetry.max_events == 500

    def test_repository_file_loads(self):
        from serenis.core.config import ritual_config

        assert ritual_config.session.expiry_days == 7
        assert ritual_config.somatic.high_intensity_threshold == 8

    def test_partial_file_keeps_defaults(self, tmp_path):
        from serenis.core.config import load_ritual_config

        path = tmp_path / "ritual_config.yaml"
        path.write_text("session:\n  history_limit: 10\n")

        config = load_ritual_config(path)

        assert config.session.history_limit == 10
        assert config.session.expiry_days == 7
        assert config.ai.max_retries_per_phase == 2

    def test_missing_or_empty_file_uses_defaults(self, tmp_path):
        from serenis.core.config import RitualConfig, load_ritual_config

        empty = tmp_path / "empty.yaml"
        empty.write_text("")

        assert load_ritual_config(tmp_path / "missing.yaml") == RitualConfig()
        assert load_ritual_config(empty) == RitualConfig()

    def test_somatic_thresholds_validated(self, tmp_path):
        from serenis.core.config import load_ritual_config

        path = tmp_path / "ritual_config.yaml"
        path.write_text(
            "somatic:\n  intensity_jump_threshold: 8\n  high_intensity_threshold: 8\n"
        )

        with pytest.raises(ValidationError):
            load_ritual_config(path)
