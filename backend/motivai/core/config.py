"""
Application configuration and settings.
"""
from typing import List, Literal, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_name: str = "MotivAI API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True

    # API
    api_v1_prefix: str = "/api/v1"
    backend_cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("backend_cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # Database
    database_url: str = "sqlite:///./motivai.db"
    db_echo_sql: bool = False

    # Redis & Celery
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/0"

    # Firebase identity provider
    firebase_project_id: str = "motivationletter-ai"
    firebase_api_key: str = ""
    use_emulator: bool = False
    firebase_auth_emulator_host: str = "127.0.0.1:9099"
    firebase_token_verification: bool = True

    # Outbound API client
    api_base_url: str = "http://127.0.0.1:5001/motivationletter-ai/us-central1/api/v1"
    api_timeout_seconds: float = 30.0
    # Requests to these paths always force a fresh ID token
    sensitive_paths: List[str] = ["/users/me", "/letters"]

    @field_validator("sensitive_paths", mode="before")
    @classmethod
    def parse_sensitive_paths(cls, v):
        if isinstance(v, str):
            return [path.strip() for path in v.split(",") if path.strip()]
        return v

    # Live notification channel
    notifications_ws_url: str = "ws://localhost:3001"
    notification_reconnect_delay_seconds: float = 5.0
    notification_retention_limit: int = 50
    notification_storage_path: Optional[str] = None

    # Rate limiting
    rate_limit_default: str = "1000/hour"

    # Subscriptions
    ai_usage_max_write_attempts: int = 3

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


# Global settings instance
settings = Settings()
