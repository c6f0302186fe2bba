# attendance_engine/core/config.py
from functools import lru_cache

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global application configuration.

    Values are loaded from environment variables at runtime.

    These settings are used for:
    - DB connection
    - Zoom API client credentials
    - Cliff detection constants
    - Bulk recalculation concurrency
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    APP_NAME: str = "Attendance Reconciliation Engine"
    APP_ENV: str = Field("local", description="Environment name: local/dev/stage/prod")
    LOG_LEVEL: str = Field("INFO", description="Level for the attendance_engine logger.")

    DB_URL: str = Field(
        "sqlite+aiosqlite:///./attendance.db",
        description="SQLAlchemy-compatible async database URL",
    )

    # --- Zoom server-to-server OAuth app ---
    ZOOM_ACCOUNT_ID: str | None = None
    ZOOM_CLIENT_ID: str | None = None
    ZOOM_CLIENT_SECRET: str | None = None
    ZOOM_BASE_URL: AnyHttpUrl | None = None
    ZOOM_OAUTH_URL: str = Field(
        "https://zoom.us/oauth/token",
        description="Token endpoint for the account_credentials grant.",
    )
    ZOOM_TIMEOUT_SECONDS: float = Field(
        10.0,
        description="Timeout applied to every Zoom API call. A timeout fails the run.",
    )

    # --- Cliff detection ---
    CLIFF_WINDOW_MINUTES: float = Field(
        10.0,
        description="Width of the sliding window used to find a mass departure.",
    )
    CLIFF_STAYER_THRESHOLD_MINUTES: float = Field(
        2.0,
        description=(
            "Participants whose final departure is within this many minutes of "
            "the meeting end are treated as stayers."
        ),
    )

    BULK_RECALC_CONCURRENCY: int = Field(
        3,
        description="Maximum number of sessions recalculated in parallel by the bulk driver.",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Using LRU cache ensures settings are read and validated only once,
    while still being easily importable across the app.
    """
    return Settings()
