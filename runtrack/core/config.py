from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database (backs the key-value store)
    DATABASE_URL: str = "sqlite+pysqlite:///./runtrack.db"

    # Storage keys shared with the mobile client
    ACTIVE_RUN_KEY: str = "activeRunState"
    RUN_HISTORY_KEY: str = "runs"

    # Run session
    TICK_INTERVAL_S: float = 1.0
    PATH_MAX_POINTS: int = 5000

    # Location sampling
    LOCATION_MIN_INTERVAL_MS: int = 2000
    LOCATION_MIN_DISTANCE_M: float = 3.0
    LOCATION_DESIRED_ACCURACY: str = "high"
    LOCATION_SERVICES_ENABLED: bool = True
    LOCATION_PERMISSION: str = "undetermined"
    MAX_ACCURACY_M: float = 50.0
    MAX_STEP_MI: float = 0.2
    ADVANCE_ANCHOR_ON_REJECT: bool = True

    # Route rendering
    STATIC_MAP_BASE_URL: str = "https://staticmap.openstreetmap.de/staticmap.php"
    STATIC_MAP_MAX_POINTS: int = 40

    # Observability
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: str | None = None
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0


settings = Settings()
