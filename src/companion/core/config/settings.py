"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Wellness companion configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: there is no auth layer in front of the tools.
    companion_host: str = "127.0.0.1"
    companion_port: int = 8001
    companion_log_level: str = "info"
    companion_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.companion/wellness.db"
    encryption_key: str = ""

    # Analytics
    insight_retention: int = 50
    sample_retention_days: int = 365

    # Periodic re-evaluation (seconds); 0 disables the background task
    reevaluation_interval_seconds: int = 900

    # Notification throttle (local hours, 24h clock). Critical alerts bypass it.
    quiet_hours_start: int = 22
    quiet_hours_end: int = 7


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
