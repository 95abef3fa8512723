"""
Runtime settings for cacheload.

Every field can be overridden with an environment variable of the same name
or a ``.env`` file in the working directory.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Load generator settings; plan files and CLI flags override these per run.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ========================================================================
    # Cache Service Settings
    # ========================================================================
    # Base URL of the cache service under test. Overridable per run (--base-url).
    CACHE_BASE_URL: str = "http://host.docker.internal:8080"

    # ========================================================================
    # HTTP Client Settings
    # ========================================================================
    # Connection limits for the shared httpx client.
    #
    # These must be high enough to match the peak worker count, otherwise
    # requests queue inside the client and the measured latency includes
    # client-side pool waits instead of service time.
    HTTP_MAX_CONNECTIONS: int = 2000
    HTTP_MAX_KEEPALIVE_CONNECTIONS: int = 500
    # Applied to patterns that do not declare their own timeout (seconds).
    HTTP_DEFAULT_TIMEOUT_SECONDS: float = 60.0

    # ========================================================================
    # Scheduler Settings
    # ========================================================================
    # Reconciliation tick. Finer ticks yield smoother ramps.
    SCHEDULER_TICK_SECONDS: float = 1.0
    # Upper bound on live workers per scenario.
    MAX_WORKERS_PER_SCENARIO: int = 5000
    # Grace period for in-flight iterations at run end. Past it a warning is
    # logged and the drain keeps waiting until every worker has returned.
    DRAIN_TIMEOUT_SECONDS: float = 30.0

    # ========================================================================
    # Lifecycle Settings
    # ========================================================================
    SETUP_TIMEOUT_SECONDS: float = 60.0
    REPORT_TIMEOUT_SECONDS: float = 10.0

    # ========================================================================
    # Output Settings
    # ========================================================================
    # If set, the final run result is written here as JSON.
    SUMMARY_EXPORT_PATH: str = ""

    # ========================================================================
    # Logging Settings
    # ========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(levelprefix)s %(asctime)s - %(message)s"

    @field_validator("CACHE_BASE_URL")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return str(v or "").strip().rstrip("/")

    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        return str(v or "INFO").strip().upper()


# Create global settings instance
settings = Settings()
