"""Configuration loading from environment variables with validation."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Anchor all paths to the platform/ directory (two levels up from this file)
_PLATFORM_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SONA_",
        case_sensitive=False,
    )

    # Storage paths (absolute, anchored to platform/)
    db_path: Path = _PLATFORM_DIR / "data" / "sona.db"
    data_dir: Path = _PLATFORM_DIR / "data" / "sona"

    # Logging
    log_level: str = "INFO"

    # In-memory bounds
    hash_cache_size: int = 1000
    log_buffer_size: int = 1000

    # Sandbox sessions
    sandbox_max_age_hours: int = 24
    sandbox_max_content: int = 50

    # Template versioning
    max_versions_to_keep: int = 50
    auto_archive_old_versions: bool = True

    # Analytics
    analytics_cache_seconds: int = 300

    # Export / import
    export_schema_version: str = "4.0.0"
    csv_locale: str = "ar"  # ar | en


def get_settings() -> Settings:
    """Load settings from environment and .env file."""
    # Load .env from the platform/ directory regardless of cwd
    load_dotenv(_PLATFORM_DIR / ".env")
    return Settings()
