"""Application configuration."""

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
    app_name: str = Field(default="ClinicFlow API", alias="APP_NAME")
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

    # Redis
    redis_host: str = Field(..., alias="REDIS_HOST")
    redis_port: int = Field(..., alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

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

    # Scheduling
    clinic_timezone: str = Field(
        default="UTC",
        alias="CLINIC_TIMEZONE",
        description="IANA timezone that defines the clinic's calendar day",
    )
    auto_confirm_bookings: bool = Field(
        default=False,
        alias="AUTO_CONFIRM_BOOKINGS",
        description="Create bookings as CONFIRMED instead of PENDING",
    )
    availability_cache_ttl: int = Field(default=900, alias="AVAILABILITY_CACHE_TTL")

    # Queue
    average_consultation_minutes: int = Field(
        default=15,
        alias="AVERAGE_CONSULTATION_MINUTES",
        description="Per-patient estimate used for queue wait times",
    )

    # Live updates
    live_channel_buffer: int = Field(
        default=100,
        alias="LIVE_CHANNEL_BUFFER",
        description="Undelivered events a live session may hold before it is evicted",
    )

    # Notification dispatcher hand-off
    notification_stream: str = Field(default="clinicflow:events", alias="NOTIFICATION_STREAM")
    notification_stream_maxlen: int = Field(default=10000, alias="NOTIFICATION_STREAM_MAXLEN")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

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
