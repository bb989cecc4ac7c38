"""Application configuration."""
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_debug: bool = True
    log_level: str = "DEBUG"

    # Database - required, read from the environment
    database_url: str = Field(
        ...,
        description="Database connection URL (required)",
    )
    db_pool_size: int = Field(
        default=20,
        description="DB connection pool size",
    )
    db_max_overflow: int = Field(
        default=10,
        description="Max overflow connections",
    )
    db_pool_recycle: int = Field(
        default=1800,
        description="Connection recycle time in seconds",
    )

    # Redis - required, read from the environment
    redis_url: str = Field(
        ...,
        description="Redis connection URL (required)",
    )
    redis_max_connections: int = 50
    redis_socket_timeout: float = 5.0
    balance_cache_ttl: int = Field(
        default=300,
        description="Seconds a cached coin balance stays valid",
    )

    # Internal admin API (milestone catalog, ledger reconciliation)
    internal_api_key: str = Field(
        ...,
        description="API key for internal admin endpoints (X-API-Key header, required)",
    )

    # Sentry Error Tracking
    sentry_dsn: str | None = Field(
        default=None,
        description="Sentry DSN for error tracking (required in production)",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.05,
        description="Sentry transaction sampling rate (0.0-1.0)",
    )

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Attendance
    reference_utc_offset_hours: int = Field(
        default=7,
        ge=-12,
        le=14,
        description="Fixed UTC offset of the reference timezone for calendar-day decisions",
    )
    backfill_window_days: int = Field(
        default=30,
        ge=1,
        description="How many past days may be bought back",
    )
    missed_day_cost: int = Field(
        default=50,
        gt=0,
        description="Coins charged per purchased missed day",
    )
    purchased_day_reward: int = Field(
        default=10,
        ge=0,
        description="Coins credited back per purchased missed day",
    )
    daily_checkin_reward: int = Field(
        default=10,
        ge=0,
        description="Coins credited for a daily check-in",
    )

    @field_validator("internal_api_key")
    @classmethod
    def validate_internal_api_key(cls, v: str) -> str:
        """Validate internal API key strength."""
        if len(v) < 16:
            raise ValueError(
                "internal_api_key must be at least 16 characters long"
            )

        weak_patterns = [
            "dev-key",
            "test-key",
            "12345",
            "admin",
        ]
        lower_v = v.lower()
        for pattern in weak_patterns:
            if pattern in lower_v:
                raise ValueError(
                    f"internal_api_key contains weak pattern '{pattern}'. "
                    "Use a strong, random API key."
                )

        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production environment."""
        if self.purchased_day_reward > self.missed_day_cost:
            raise ValueError(
                "purchased_day_reward must not exceed missed_day_cost"
            )

        if self.app_env == "production":
            if self.app_debug:
                raise ValueError(
                    "app_debug must be False in production environment"
                )

            origins = [o.strip() for o in self.cors_origins.split(",")]
            if "*" in origins:
                raise ValueError(
                    "CORS wildcard '*' is not allowed in production environment. "
                    "Specify explicit allowed origins."
                )

        return self

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
