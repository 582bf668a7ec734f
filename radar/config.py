"""Runtime configuration loaded from the environment."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).parent / "data"


class Settings(BaseSettings):
    """Pipeline settings. Every field can be overridden with ``RADAR_<NAME>``."""

    model_config = SettingsConfigDict(env_prefix="RADAR_", env_file=".env", extra="ignore")

    database_path: Path = DATA_DIR / "radar.db"
    uploads_dir: Path = DATA_DIR / "uploads"

    # Suspension points: both are bounded
    engine_timeout: float = 30.0
    store_timeout: float = 10.0

    commit_attempts: int = 3
    commit_backoff: float = 0.5
    commit_backoff_max: float = 8.0

    context_entries: int = 3
    max_context_chars: int = 8000
    max_content_chars: int = 20_000

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
