"""Application settings powered by Pydantic BaseSettings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Environment configuration for the CLI."""

    model_config = SettingsConfigDict(
        env_prefix="STATCACHE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    config: Path | None = Field(default=None, description="YAML config file")
    cache_dir: Path | None = Field(
        default=None, description="Overrides cache_dir from the config file"
    )
    log_level: str = "INFO"
    log_json: bool = False


def get_settings() -> AppSettings:
    """Get a settings instance."""
    return AppSettings()
