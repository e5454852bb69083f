"""Configuration management using pydantic-settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
import structlog


class RegenerationSettings(BaseSettings):
    """Membership regeneration configuration loaded from environment variables.

    All settings prefixed with REGEN_ (e.g., REGEN_LOCK_TTL_SECONDS=600)
    """

    # Per-collection lock
    lock_ttl_seconds: int = Field(
        default=600,
        ge=10,
        le=86400,
        description="Seconds before an unreleased regeneration lock can be taken over"
    )
    lock_wait_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=120.0,
        description="How long a synchronous 'regenerate now' waits for a held lock"
    )
    lock_poll_interval_seconds: float = Field(
        default=0.25,
        gt=0.0,
        le=10.0,
        description="Polling interval while waiting for a held lock"
    )

    # Sweep
    sweep_batch_size: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum dirty collections picked up per sweep run"
    )
    sweep_interval_minutes: int = Field(
        default=5,
        ge=1,
        le=60,
        description="Minutes between scheduled sweeps over dirty collections"
    )

    # Admin listing
    page_size_default: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Default page size for membership listings"
    )
    page_size_max: int = Field(
        default=250,
        ge=1,
        le=1000,
        description="Upper bound for requested page sizes"
    )

    model_config = SettingsConfigDict(
        env_prefix="REGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str

    # Redis Configuration
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_password: str = ""
    redis_url: Optional[str] = None

    # Queue Configuration
    queue_name: str = "collection-regeneration-queue"

    # Worker Configuration
    max_workers: int = 5
    job_timeout: int = 300
    log_level: str = "INFO"
    environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def __init__(self, **kwargs):
        """Initialize settings and build derived values."""
        super().__init__(**kwargs)
        # Build Redis URL if not provided
        if not self.redis_url:
            auth = f":{self.redis_password}@" if self.redis_password else ""
            self.redis_url = f"redis://{auth}{self.redis_host}:{self.redis_port}/0"


# Global settings instances
settings = Settings()
regeneration_settings = RegenerationSettings()


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for JSON logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# Initialize logging on module import (after settings are loaded)
try:
    configure_logging(settings.log_level)
except Exception:
    # If settings fail to load, use default log level
    configure_logging("INFO")
