from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, ConfigDict

BASE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TRACKER_",
    )

    # Database
    database_path: Optional[Path] = Field(
        default=None,
        description="SQLite file holding customers and units. Falls back to service_tracker.db next to the package.",
    )
    sqlite_timeout_seconds: float = Field(
        default=10.0, description="How long a writer waits for the database lock"
    )

    # Due-status engine
    due_soon_days: int = Field(
        default=7, ge=1, description="Upper bound (inclusive) of the 'Due Soon' bucket"
    )

    # Import
    max_import_bytes: int = Field(
        default=5 * 1024 * 1024, description="Largest accepted CSV upload"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: Optional[Path] = Field(
        default=None, description="Optional rotating log file. Console only when unset."
    )
    log_json: bool = Field(default=False, description="Emit file logs as JSON lines")

    # Frontend origins - can be comma-separated string or list
    allowed_origins: str | list[str] = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, v):
        if isinstance(v, str):
            # Split by comma and strip whitespace
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def resolved_database_path(self) -> Path:
        return self.database_path or BASE_DIR / "service_tracker.db"


@lru_cache
def get_settings() -> Settings:
    return Settings()
