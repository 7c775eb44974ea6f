"""Application configuration utilities."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MB = 1024 * 1024


class Settings(BaseSettings):
    """Settings derived from environment variables."""

    env: str = Field(default="dev", alias="ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    allowed_origins: str = Field(default="http://localhost:3000", alias="ALLOWED_ORIGINS")
    upload_dir: str = Field(default="/tmp/report-export/uploads", alias="UPLOAD_DIR")
    admin_token: str | None = Field(default=None, alias="ADMIN_TOKEN")
    http_rate_limit: str = Field(default="120/minute", alias="HTTP_RATE_LIMIT")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, ge=1, le=65535, alias="PORT")

    # Background loops
    background_tasks_enabled: bool = Field(default=True, alias="BACKGROUND_TASKS_ENABLED")
    scheduler_interval_seconds: float = Field(default=30.0, gt=0, alias="SCHEDULER_INTERVAL_SECONDS")
    cleanup_interval_seconds: float = Field(default=15 * 60.0, gt=0, alias="CLEANUP_INTERVAL_SECONDS")

    # Result cache
    cache_capacity_bytes: int = Field(default=256 * MB, gt=0, alias="CACHE_CAPACITY_BYTES")
    cache_ttl_seconds: float = Field(default=15 * 60.0, gt=0, alias="CACHE_TTL_SECONDS")

    # Jobs
    job_retention_seconds: float = Field(default=24 * 3600.0, gt=0, alias="JOB_RETENTION_SECONDS")

    # Export admission
    export_max_concurrent: int = Field(default=1, ge=1, alias="EXPORT_MAX_CONCURRENT")
    export_hourly_limit: int = Field(default=5, ge=1, alias="EXPORT_HOURLY_LIMIT")
    export_hourly_window_seconds: float = Field(default=3600.0, gt=0, alias="EXPORT_HOURLY_WINDOW_SECONDS")
    export_daily_limit: int = Field(default=20, ge=1, alias="EXPORT_DAILY_LIMIT")
    export_daily_window_seconds: float = Field(default=24 * 3600.0, gt=0, alias="EXPORT_DAILY_WINDOW_SECONDS")

    # Upload admission
    upload_max_payload_bytes: int = Field(default=10 * MB, gt=0, alias="UPLOAD_MAX_PAYLOAD_BYTES")
    upload_ip_max_requests: int = Field(default=50, ge=1, alias="UPLOAD_IP_MAX_REQUESTS")
    upload_ip_window_seconds: float = Field(default=15 * 60.0, gt=0, alias="UPLOAD_IP_WINDOW_SECONDS")
    upload_user_max_requests: int = Field(default=20, ge=1, alias="UPLOAD_USER_MAX_REQUESTS")
    upload_user_window_seconds: float = Field(default=5 * 60.0, gt=0, alias="UPLOAD_USER_WINDOW_SECONDS")
    upload_user_max_concurrent: int = Field(default=2, ge=1, alias="UPLOAD_USER_MAX_CONCURRENT")
    emergency_mode: bool = Field(default=False, alias="EMERGENCY_MODE")

    # Admin endpoints
    admin_max_requests: int = Field(default=30, ge=1, alias="ADMIN_MAX_REQUESTS")
    admin_window_seconds: float = Field(default=10 * 60.0, gt=0, alias="ADMIN_WINDOW_SECONDS")

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    @property
    def is_prod(self) -> bool:
        return self.env.lower() in {"prod", "production"}

    @property
    def origins(self) -> list[str]:
        """Return ``ALLOWED_ORIGINS`` split on commas."""

        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["MB", "Settings", "get_settings"]
