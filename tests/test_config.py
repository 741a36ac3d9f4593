"""
Tests for configuration module.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from valreport.config import Settings, clear_settings_cache, get_settings
from valreport.narrative import NarrativeOptions


class TestSettingsValidation:
    """Tests for Settings validation."""

    def test_settings_loads_from_env(self, mock_env_vars: dict[str, str]) -> None:
        """Test that settings correctly loads from environment variables."""
        settings = get_settings()

        assert settings.ANTHROPIC_API_KEY == "sk-ant-REDACTED"
        assert settings.GENERATION_MODEL == "claude-test-model"
        assert settings.MAX_CONCURRENT_SECTIONS == 2
        assert settings.DUPLICATE_JOB_POLICY == "reject"
        assert settings.LOG_LEVEL == "DEBUG"

    def test_api_key_optional(self) -> None:
        """Settings load without a key; only building a live client needs one."""
        with patch.dict(os.environ, {}, clear=True):
            clear_settings_cache()

            settings = Settings(_env_file=None)
            assert settings.anthropic_api_key is None

    def test_blank_api_key_is_none(self) -> None:
        """Test that an empty key from .env is treated as unset."""
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "   "}, clear=True):
            settings = Settings(_env_file=None)
            assert settings.ANTHROPIC_API_KEY is None

    def test_unknown_duplicate_policy_rejected(self) -> None:
        """Test that DUPLICATE_JOB_POLICY only accepts reject or supersede."""
        with patch.dict(os.environ, {"DUPLICATE_JOB_POLICY": "queue"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_concurrency_bounds(self) -> None:
        """Test that MAX_CONCURRENT_SECTIONS must be within 1..10."""
        with patch.dict(os.environ, {"MAX_CONCURRENT_SECTIONS": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)


class TestSettingsDefaults:
    """Tests for Settings default values."""

    def test_default_generation_settings(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

            assert settings.MAX_GENERATION_ATTEMPTS == 3
            assert settings.MAX_CONCURRENT_SECTIONS == 3
            assert settings.SKIP_FAILED_SECTIONS is True
            assert settings.DUPLICATE_JOB_POLICY == "reject"

    def test_default_directories(self) -> None:
        """Test default directory paths."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

            assert settings.DATA_DIR == Path("data")
            assert settings.OUTPUT_DIR == Path("output")


class TestSettingsMethods:
    """Tests for Settings methods."""

    def test_ensure_directories_creates_dirs(
        self, mock_settings: Settings, temp_dir: Path
    ) -> None:
        """Test that ensure_directories creates data and output dirs."""
        mock_settings.ensure_directories()

        assert mock_settings.DATA_DIR.exists()
        assert mock_settings.OUTPUT_DIR.exists()
        assert mock_settings.DATA_DIR.parent == temp_dir

    def test_redacted_display_hides_keys(self, mock_settings: Settings) -> None:
        """Test that redacted_display masks API keys."""
        display = mock_settings.redacted_display()

        key = display.get("ANTHROPIC_API_KEY")
        assert key is not None
        assert "..." in str(key)
        assert len(str(key)) < len(str(mock_settings.ANTHROPIC_API_KEY or ""))

        assert display["GENERATION_MODEL"] == mock_settings.GENERATION_MODEL
        assert display["MAX_CONCURRENT_SECTIONS"] == 2

    def test_narrative_options_from_settings(self, mock_settings: Settings) -> None:
        options = NarrativeOptions.from_settings(mock_settings)

        assert options.max_concurrency == 2
        assert options.skip_failed_sections is True
        assert options.include_company_research is True


class TestSettingsCache:
    """Tests for settings caching."""

    def test_get_settings_returns_same_instance(
        self, mock_env_vars: dict[str, str]
    ) -> None:
        """Test that get_settings returns cached instance."""
        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

    def test_clear_settings_cache_clears_cache(
        self, mock_env_vars: dict[str, str]
    ) -> None:
        """Test that clear_settings_cache clears the cache."""
        settings1 = get_settings()
        clear_settings_cache()
        settings2 = get_settings()

        assert settings1 is not settings2
