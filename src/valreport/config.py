"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates fields and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional:
        ANTHROPIC_API_KEY: Provider key, required once a live client is built
        GENERATION_MODEL: Model used for every generation call
        MAX_CONCURRENT_SECTIONS: Parallel section generations per job
        SKIP_FAILED_SECTIONS: Degrade failed sections to placeholders
        DUPLICATE_JOB_POLICY: reject | supersede a second job per engagement
        JOB_RETENTION_SECONDS: Age after which finished jobs are swept
        DATA_DIR: Engagement records, templates and economic outlooks
        OUTPUT_DIR: Generated report artifacts
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")

    # Generation defaults
    GENERATION_MODEL: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model for text and document generation",
    )
    GENERATION_MAX_TOKENS: int = Field(default=4096, ge=1, description="Default max tokens")
    GENERATION_TEMPERATURE: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Default sampling temperature"
    )
    REQUEST_TIMEOUT_SECONDS: float = Field(
        default=120.0, gt=0.0, description="Per-call timeout for provider requests"
    )
    MAX_GENERATION_ATTEMPTS: int = Field(
        default=3, ge=1, le=10, description="Attempts per provider call"
    )

    # Pipeline behaviour
    MAX_CONCURRENT_SECTIONS: int = Field(
        default=3, ge=1, le=10, description="Concurrent section generations per job"
    )
    SKIP_FAILED_SECTIONS: bool = Field(
        default=True, description="Replace failed sections with placeholders"
    )
    INCLUDE_COMPANY_RESEARCH: bool = Field(default=True, description="Run company research")
    INCLUDE_INDUSTRY_RESEARCH: bool = Field(default=True, description="Run industry research")
    DUPLICATE_JOB_POLICY: Literal["reject", "supersede"] = Field(
        default="reject",
        description="What to do when a job is submitted for an engagement already in flight",
    )
    JOB_RETENTION_SECONDS: float = Field(
        default=3600.0, ge=0.0, description="Finished jobs older than this are swept"
    )

    # Limits
    MAX_UPLOAD_BYTES: int = Field(default=50 * MB, ge=1, description="Stored input cap")
    MAX_DOCUMENT_BYTES: int = Field(
        default=30 * MB, ge=1, description="Document-grounded generation cap"
    )

    # Directories
    DATA_DIR: Path = Field(default=Path("data"), description="Engagement data directory")
    OUTPUT_DIR: Path = Field(default=Path("output"), description="Output directory")

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @property
    def anthropic_api_key(self) -> str | None:
        """Get Anthropic API key (lowercase alias)."""
        return self.ANTHROPIC_API_KEY

    @field_validator("ANTHROPIC_API_KEY")
    @classmethod
    def blank_key_is_none(cls, v: str | None) -> str | None:
        """Treat an empty key from .env as unset."""
        if v is not None and not v.strip():
            return None
        return v

    def ensure_directories(self) -> None:
        """Create data and output directories if they don't exist."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | bool | None]:
        """Return settings with API keys redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"

        return {
            "ANTHROPIC_API_KEY": redact(self.ANTHROPIC_API_KEY),
            "GENERATION_MODEL": self.GENERATION_MODEL,
            "GENERATION_MAX_TOKENS": self.GENERATION_MAX_TOKENS,
            "GENERATION_TEMPERATURE": self.GENERATION_TEMPERATURE,
            "REQUEST_TIMEOUT_SECONDS": self.REQUEST_TIMEOUT_SECONDS,
            "MAX_GENERATION_ATTEMPTS": self.MAX_GENERATION_ATTEMPTS,
            "MAX_CONCURRENT_SECTIONS": self.MAX_CONCURRENT_SECTIONS,
            "SKIP_FAILED_SECTIONS": self.SKIP_FAILED_SECTIONS,
            "INCLUDE_COMPANY_RESEARCH": self.INCLUDE_COMPANY_RESEARCH,
            "INCLUDE_INDUSTRY_RESEARCH": self.INCLUDE_INDUSTRY_RESEARCH,
            "DUPLICATE_JOB_POLICY": self.DUPLICATE_JOB_POLICY,
            "JOB_RETENTION_SECONDS": self.JOB_RETENTION_SECONDS,
            "MAX_UPLOAD_BYTES": self.MAX_UPLOAD_BYTES,
            "MAX_DOCUMENT_BYTES": self.MAX_DOCUMENT_BYTES,
            "DATA_DIR": str(self.DATA_DIR),
            "OUTPUT_DIR": str(self.OUTPUT_DIR),
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
