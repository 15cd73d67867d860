"""Application configuration."""

from datetime import datetime
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Clinic Appointments API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis (optional, caching is disabled without a host)
    redis_host: str | None = Field(default=None, alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # JWT
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    # Clinic clock
    clinic_timezone: str = Field(default="America/Mexico_City", alias="CLINIC_TIMEZONE")

    # Check-in window
    check_in_opens_before_minutes: int = Field(
        default=30, ge=0, alias="CHECK_IN_OPENS_BEFORE_MINUTES"
    )
    check_in_closes_after_minutes: int = Field(
        default=15,
        ge=0,
        alias="CHECK_IN_CLOSES_AFTER_MINUTES",
        description="Minutes after the scheduled time before check-in is considered expired",
    )
    enforce_check_in_window: bool = Field(default=True, alias="ENFORCE_CHECK_IN_WINDOW")

    # Time guards for no-show, cancellation and reschedule
    no_show_after_minutes: int = Field(default=15, ge=0, alias="NO_SHOW_AFTER_MINUTES")
    reschedule_deadline_minutes: int = Field(
        default=120,
        ge=0,
        alias="RESCHEDULE_DEADLINE_MINUTES",
        description="Pending appointments cannot be rescheduled this close to their time",
    )
    enforce_action_windows: bool = Field(default=True, alias="ENFORCE_ACTION_WINDOWS")

    # Schedule rules
    schedule_work_days_str: str = Field(default="0,1,2,3,4,5", alias="SCHEDULE_WORK_DAYS")
    schedule_start_hour: int = Field(default=9, ge=0, le=23, alias="SCHEDULE_START_HOUR")
    schedule_end_hour: int = Field(default=15, ge=1, le=24, alias="SCHEDULE_END_HOUR")
    schedule_lunch_start_hour: int | None = Field(default=12, alias="SCHEDULE_LUNCH_START_HOUR")
    schedule_lunch_end_hour: int | None = Field(default=13, alias="SCHEDULE_LUNCH_END_HOUR")
    schedule_slot_minutes: int = Field(default=30, ge=1, le=60, alias="SCHEDULE_SLOT_MINUTES")
    schedule_max_advance_days: int = Field(default=60, ge=1, alias="SCHEDULE_MAX_ADVANCE_DAYS")
    schedule_min_lead_minutes: int = Field(default=120, ge=0, alias="SCHEDULE_MIN_LEAD_MINUTES")
    schedule_blackouts_str: str = Field(
        default="",
        alias="SCHEDULE_BLACKOUTS",
        description="Comma separated start/end ISO-8601 pairs that cannot be booked",
    )

    @property
    def schedule_work_days(self) -> frozenset[int]:
        """Get bookable weekdays (Monday is 0)."""
        return frozenset(
            int(day.strip()) for day in self.schedule_work_days_str.split(",") if day.strip()
        )

    @property
    def schedule_blackouts(self) -> list[tuple[datetime, datetime]]:
        """Get blackout ranges as (start, end) pairs."""
        ranges = []
        for item in self.schedule_blackouts_str.split(","):
            if not item.strip():
                continue
            start, _, end = item.strip().partition("/")
            ranges.append((datetime.fromisoformat(start), datetime.fromisoformat(end)))
        return ranges

    # Audit trail / history
    audit_write_timeout_seconds: float = Field(
        default=5.0, gt=0, alias="AUDIT_WRITE_TIMEOUT_SECONDS"
    )
    history_cache_ttl_seconds: int = Field(default=60, ge=0, alias="HISTORY_CACHE_TTL_SECONDS")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
