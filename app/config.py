from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Supabase settings
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    SUPABASE_DB_URL: str | None = None
    SUPABASE_JWT_SECRET: str | None = None

    # Outbox delivery webhook (Make / external sender)
    OUTBOX_WEBHOOK_URL: str | None = None
    OUTBOX_WEBHOOK_SECRET: str | None = None
    OUTBOX_WEBHOOK_TIMEOUT_SECONDS: float = 10.0

    # =================================================================
    # AUTOMATION JOB SETTINGS
    # =================================================================
    JOB_STALE_RUN_MINUTES: int = 30
    JOB_DRY_RUN_PREVIEW_LIMIT: int = 25
    PG_DUES_INTERVAL_MINUTES: int = 360  # 6 hours
    CLINIC_REMINDERS_INTERVAL_MINUTES: int = 15

    # =================================================================
    # DATABASE POOL SETTINGS - Simple and configurable
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # Job handlers are sequential, a couple of connections is plenty
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config

    def get_job_config(self) -> dict:
        """Get automation job tuning (staleness window, preview size, cadence)."""
        return {
            "stale_run_minutes": max(1, self.JOB_STALE_RUN_MINUTES),
            "dry_run_preview_limit": max(0, self.JOB_DRY_RUN_PREVIEW_LIMIT),
            "pg_dues_interval_minutes": max(1, self.PG_DUES_INTERVAL_MINUTES),
            "clinic_reminders_interval_minutes": max(1, self.CLINIC_REMINDERS_INTERVAL_MINUTES),
        }


settings = Settings()
