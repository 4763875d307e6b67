"""
Application settings loaded from environment variables.

Uses Pydantic Settings for validation and type coercion.
Never log or expose sensitive values.
"""

from functools import lru_cache
from typing import Literal
from uuid import UUID

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "UrbanWatch"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # Database
    database_url: SecretStr = Field(
        ...,
        description="PostgreSQL connection string with asyncpg driver",
    )
    db_statement_timeout_ms: int = Field(
        default=5000,
        description="Per-statement timeout applied to PostgreSQL connections",
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL uses asyncpg driver."""
        if v and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # Redis
    redis_url: SecretStr = Field(
        ...,
        description="Redis connection string",
    )

    # Security
    jwt_secret: SecretStr = Field(
        ...,
        description="256-bit secret for JWT signing",
        min_length=32,
    )
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    # Detection ingestion
    yolo_api_key: SecretStr = Field(
        ...,
        description="Shared key presented by CCTV detectors in X-API-Key",
    )
    anthropic_api_key: SecretStr = Field(
        ...,
        description="Anthropic API key for snapshot verification",
    )
    detection_model: str = "claude-sonnet-4-20250514"
    detection_max_tokens: int = 1024

    # SMS (TextBee)
    textbee_base_url: str = "https://api.textbee.dev/api/v1"
    textbee_api_key: SecretStr | None = Field(
        default=None,
        description="TextBee gateway API key",
    )
    textbee_device_id: str | None = Field(
        default=None,
        description="TextBee gateway device ID",
    )

    # Email (SMTP)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: SecretStr | None = None
    smtp_use_tls: bool = True
    mail_from: str = "UrbanWatch <no-reply@urbanwatch.local>"

    # Media
    media_root: str = "storage/media"
    media_base_url: str = "/media"
    max_upload_bytes: int = 10 * 1024 * 1024

    # Distribution
    default_purok_leader_id: UUID | None = Field(
        default=None,
        description="Purok leader that receives new concerns; least-loaded leader when unset",
    )

    # Notification dispatch
    notification_max_attempts: int = Field(default=3, ge=1)
    notification_backoff_seconds: float = Field(default=60.0, ge=0)
    http_timeout_seconds: float = 5.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 4
    worker_health_port: int = 8081

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()
