"""
Application settings configuration for the event series backend.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        EVSERIES_DEFAULT_TIMEZONE: Timezone for series created without one (default: "UTC")
        EVSERIES_MAX_OCCURRENCE_COUNT: Upper bound on occurrences generated for
            rules without count/until (default: 100)
        EVSERIES_MAX_UPCOMING_COUNT: Upper bound on upcoming occurrences returned
            per request (default: 50)
        EVSERIES_MATERIALIZE_BATCH_SIZE: Default N for "materialize next N" (default: 2)
        EVSERIES_MATERIALIZE_WAVE_SIZE: Occurrences created per wave during batch
            materialization (default: 2)
        EVSERIES_COLLABORATOR_TIMEOUT_SECONDS: Default deadline for persistence
            calls when the caller supplies none (default: 10)
        EVSERIES_PAST_WINDOW_DAYS: How far back include_past searches before the
            earliest anchor (default: 366)
        EVSERIES_EVENT_PAGE_LIMIT: Page size used when loading all events of a
            series (default: 1000)
        EVSERIES_ENV: production or development (default: development)
        EVSERIES_LOG_LEVEL: Level for the application loggers (default: INFO)
        EVSERIES_LOG_DIR: Directory for production log files (default: logs)
    """

    default_timezone: str = Field(
        default="UTC",
        validation_alias="EVSERIES_DEFAULT_TIMEZONE",
        description="IANA timezone used when a series does not declare one",
    )

    max_occurrence_count: int = Field(
        default=100,
        validation_alias="EVSERIES_MAX_OCCURRENCE_COUNT",
        ge=1,
        le=10000,
    )

    max_upcoming_count: int = Field(
        default=50,
        validation_alias="EVSERIES_MAX_UPCOMING_COUNT",
        ge=1,
        le=1000,
    )

    materialize_batch_size: int = Field(
        default=2,
        validation_alias="EVSERIES_MATERIALIZE_BATCH_SIZE",
        ge=1,
        le=100,
    )

    # Batch materialization creates occurrences in sequential waves of this
    # size so a large N never fans out against the database at once.
    materialize_wave_size: int = Field(
        default=2,
        validation_alias="EVSERIES_MATERIALIZE_WAVE_SIZE",
        ge=1,
        le=50,
    )

    collaborator_timeout_seconds: float = Field(
        default=10.0,
        validation_alias="EVSERIES_COLLABORATOR_TIMEOUT_SECONDS",
        gt=0,
    )

    past_window_days: int = Field(
        default=366,
        validation_alias="EVSERIES_PAST_WINDOW_DAYS",
        ge=366,
        description="Backward search buffer for include_past (at least one year)",
    )

    event_page_limit: int = Field(
        default=1000,
        validation_alias="EVSERIES_EVENT_PAGE_LIMIT",
        ge=1,
    )

    environment: str = Field(
        default="development",
        validation_alias="EVSERIES_ENV",
        description="production switches logging to JSON files",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="EVSERIES_LOG_LEVEL",
    )

    log_dir: str = Field(
        default="logs",
        validation_alias="EVSERIES_LOG_DIR",
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize the log level name and reject unknown levels."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("default_timezone")
    @classmethod
    def validate_default_timezone(cls, v: str) -> str:
        """Validate that the default timezone is a known IANA zone."""
        from backend.src.services.exceptions import UnknownTimeZoneError
        from backend.src.utils.timezone import resolve_timezone

        try:
            resolve_timezone(v)
        except UnknownTimeZoneError as e:
            raise ValueError(str(e))
        return v


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
