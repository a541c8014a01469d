"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings, read from ``TREADWEAR_*`` environment variables (or .env).

    Tracking policy (thresholds, tick interval, timezone) lives in
    ``tracking_config.yaml``; see ``treadwear.tracking.config_loader``.
    """

    # --- App ---
    app_name: str = "Treadwear"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Storage ---
    storage_backend: str = "sqlite"  # sqlite | memory
    database_path: str = "data/treadwear.db"

    # --- Activity data ---
    activity_source: str = "static"  # static | apple_health
    apple_health_export_path: str | None = None

    # --- Tracking policy ---
    tracking_config_path: str | None = None  # None = bundled tracking_config.yaml
    auto_management_enabled: bool = True

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_prefix="TREADWEAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
