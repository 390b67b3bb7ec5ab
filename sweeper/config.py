from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Database (Supabase Postgres)
    SUPABASE_DB_URL: str | None = None

    # Gmail OAuth settings
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None

    # Fernet key used to encrypt OAuth tokens at rest
    TOKEN_ENCRYPTION_KEY: str | None = None

    # External enrichment / notification providers
    HIBP_API_KEY: str | None = None
    RESEND_API_KEY: str | None = None
    RESEND_FROM_ADDRESS: str | None = None
    SWEEP_COMPLETED_TEMPLATE_ID: str = "5c7439e4-7831-437e-98fd-5d3c6bbf20a7"
    SWEEP_FAILED_TEMPLATE_ID: str = "2ffe31a7-325e-4f0b-9055-573dd1467899"
    LOGO_DEV_PUBLISHABLE_KEY: str | None = None

    # Worker settings
    WORKER_POLL_INTERVAL_SECONDS: float = 10.0

    # Pool sizing (one claimed job at a time)
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 6
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0
    DB_POOL_MAX_LIFETIME: float = 3600.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def get_db_pool_config(self) -> dict:
        """psycopg_pool keyword arguments; local development gets a single small pool."""
        if self.is_development:
            return {
                "min_size": 1,
                "max_size": 4,
                "timeout": 15.0,
                "max_idle": self.DB_POOL_MAX_IDLE,
                "max_lifetime": self.DB_POOL_MAX_LIFETIME,
            }
        return {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }


settings = Settings()
