from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    DATABASE_URL: str = "sqlite:///./commutewatch.db"
    LOG_LEVEL: str = "INFO"
    # Connection pool (ignored for SQLite)
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    # Poll workers and the API write to the same SQLite file; wait this long on a lock
    SQLITE_BUSY_TIMEOUT_MS: int = 5000
    # Sessions a user may start per UTC calendar day, across all routes
    DAILY_QUOTA: int = 10
    # Cadence of the per-route poll chain
    POLL_INTERVAL_MINUTES: int = 5
    # A sample is "elevated" when its distance is this % above the session median
    REROUTE_DISTANCE_THRESHOLD_PCT: int = 15
    # Baseline statistics
    BASELINE_MIN_DISTINCT_DAYS: int = 3
    BASELINE_LOOKBACK_DAYS: int = 90
    # Slots within this fraction of the fastest mean qualify for the optimal window
    OPTIMAL_WINDOW_TOLERANCE: float = 0.05
    # Poll records older than this are soft-deleted by the nightly prune
    RETENTION_DAYS: int = 90
    # Traffic providers
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    GOOGLE_MAPS_API_KEY: str | None = None
    NOMINATIM_USER_AGENT: str = "CommuteWatch/0.1 (commute-monitoring)"
    OSRM_BASE_URL: str = "https://router.project-osrm.org"
    # Route every provider to the synthetic mock (local dev / e2e runs)
    USE_MOCK_PROVIDER: bool = False
    # Durable scheduler (APScheduler). Job store defaults to DATABASE_URL.
    SCHEDULER_JOBSTORE_URL: str | None = None
    # None: a link that came due while no worker ran still fires late
    SCHEDULER_MISFIRE_GRACE_SECONDS: int | None = None
    SCHEDULER_MAX_WORKERS: int = 10
    # Start the scheduler inside the API process (otherwise run `commutewatch worker`)
    RUN_SCHEDULER_IN_API: bool = False
    # API authentication (if unset, all requests pass; local dev)
    COMMUTEWATCH_API_KEY: str | None = None
    # CORS origins (comma-separated string for env var support)
    CORS_ORIGINS: str = "http://localhost:5173"


settings = Settings()
