from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url


class Settings(BaseSettings):
    """
    Database settings for the order tracker.

    Reads from environment variables (or .env via pydantic-settings):
      - POSTGRES_URL, or POSTGRES_USER / POSTGRES_PASSWORD / POSTGRES_DB
        with optional POSTGRES_HOST / POSTGRES_PORT
      - DB_POOL_SIZE, DB_MAX_OVERFLOW, LOCK_TIMEOUT_MS, SQL_ECHO
    """

    POSTGRES_URL: Optional[str] = Field(
        default=None, description="If provided, full PostgreSQL connection URL."
    )
    POSTGRES_USER: Optional[str] = Field(default=None, description="DB username")
    POSTGRES_PASSWORD: Optional[str] = Field(default=None, description="DB password")
    POSTGRES_DB: Optional[str] = Field(default=None, description="Database name")
    POSTGRES_PORT: int = Field(default=5432, description="Database port")
    POSTGRES_HOST: str = Field(default="localhost", description="Database host")

    # Engine options
    SQL_ECHO: bool = Field(default=False, description="Echo SQL statements for debugging")
    DB_POOL_SIZE: int = Field(default=5, ge=1)
    DB_MAX_OVERFLOW: int = Field(default=10, ge=0)
    LOCK_TIMEOUT_MS: int = Field(
        default=5000,
        ge=0,
        description="Postgres lock_timeout for each connection; 0 disables the timeout",
    )
    DB_APPLICATION_NAME: str = Field(default="order-tracker-api", description="Shown in pg_stat_activity")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    def _url(self) -> URL:
        if self.POSTGRES_URL:
            return make_url(self.POSTGRES_URL)
        if not all([self.POSTGRES_USER, self.POSTGRES_PASSWORD, self.POSTGRES_DB]):
            raise ValueError(
                "Database configuration missing. Set POSTGRES_URL or "
                "POSTGRES_USER, POSTGRES_PASSWORD and POSTGRES_DB."
            )
        return URL.create(
            "postgresql",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            database=self.POSTGRES_DB,
        )

    @property
    def async_database_url(self) -> str:
        """URL with the asyncpg driver, used by the application engine."""
        return self._url().set(drivername="postgresql+asyncpg").render_as_string(hide_password=False)

    @property
    def sync_database_url(self) -> str:
        """Driverless postgresql:// URL, enough for Alembic offline mode."""
        return self._url().set(drivername="postgresql").render_as_string(hide_password=False)

    @property
    def engine_options(self) -> Dict[str, Any]:
        """
        Keyword arguments for create_async_engine.

        lock_timeout makes an advisory lock wait fail with SQLSTATE 55P03 instead
        of hanging the request; the repository turns that into a conflict.
        """
        return {
            "echo": self.SQL_ECHO,
            "pool_pre_ping": True,
            "pool_size": self.DB_POOL_SIZE,
            "max_overflow": self.DB_MAX_OVERFLOW,
            "connect_args": {
                "server_settings": {
                    "lock_timeout": str(self.LOCK_TIMEOUT_MS),
                    "application_name": self.DB_APPLICATION_NAME,
                }
            },
        }


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Database settings, read from the environment once per process."""
    return Settings()
