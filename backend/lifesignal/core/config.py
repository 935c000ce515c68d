"""
Configuration management using Pydantic Settings.
Loads environment variables from .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Life Signal"
    app_version: str = "0.1.0"
    debug: bool = False

    # Supabase Configuration
    supabase_url: str
    supabase_anon_key: str
    supabase_service_role_key: Optional[str] = None  # Preferred for the scan job

    # Telnyx Call Control
    telnyx_api_key: Optional[str] = None
    telnyx_application_id: Optional[str] = None  # Call Control connection id
    telnyx_from_number: Optional[str] = None  # Caller id, E.164
    telnyx_api_base: str = "https://api.telnyx.com/v2"

    # Firebase Cloud Messaging (HTTP v1)
    firebase_service_account_json: Optional[str] = None

    # Outbound HTTP
    request_timeout_seconds: float = 30.0

    # CORS Settings (for the dashboard)
    cors_origins: str = "http://localhost:3000"

    # Scheduler Settings
    enable_scheduler: bool = True
    scheduler_timezone: str = "UTC"

    # Only ONE worker should run the scan timer in multi-worker deployments
    run_scheduler: bool = False

    # Escalation scan
    scan_interval_minutes: int = 5
    scan_page_size: int = 200

    # Job Monitoring
    job_failure_alert_threshold: int = 2  # Pause the job after this many failures

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def telephony_enabled(self) -> bool:
        """Check if the Telnyx API key is configured."""
        return bool(self.telnyx_api_key)

    @property
    def calls_enabled(self) -> bool:
        """Check if outbound calls can be placed (connection id and caller id)."""
        return bool(self.telnyx_application_id and self.telnyx_from_number)

    @property
    def push_enabled(self) -> bool:
        """Check if FCM credentials are configured."""
        return bool(self.firebase_service_account_json)

    @property
    def supabase_key(self) -> str:
        """Key used for server-side access to the store."""
        return self.supabase_service_role_key or self.supabase_anon_key


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Call this function to get application settings.
    """
    return Settings()


# Global settings instance
settings = get_settings()
