from __future__ import annotations

import json
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# List settings read from the environment as raw strings and split below.
CsvList = Annotated[List[str], NoDecode]


class AppSettings(BaseSettings):
    """
    Service-level settings: API metadata, CORS, token verification and tuning.

    Database options live in order_tracker.db.config.Settings.
    """

    APP_NAME: str = Field(default="Order Tracker API")
    APP_DESCRIPTION: str = Field(
        default=(
            "Production lifecycle API for manufacturing orders: stage transitions, "
            "measurements, audit trail, account deletion checks and reports."
        )
    )
    APP_VERSION: str = Field(default="0.1.0")
    ENVIRONMENT: Optional[str] = Field(default=None, description="dev, test or prod")
    LOG_LEVEL: str = Field(default="INFO")

    CORS_ORIGINS: CsvList = Field(
        default_factory=lambda: ["*"],
        description="Allowed origins as a JSON array or a comma-separated list",
    )
    CORS_ALLOW_CREDENTIALS: bool = Field(default=True)
    CORS_ALLOW_METHODS: CsvList = Field(default_factory=lambda: ["*"])
    CORS_ALLOW_HEADERS: CsvList = Field(default_factory=lambda: ["*"])

    RUN_MIGRATIONS_ON_STARTUP: bool = Field(
        default=True, description="Apply Alembic migrations up to head when the app starts"
    )

    # Tokens are issued elsewhere; this service only verifies them.
    JWT_SECRET_KEY: str = Field(default="change-me")
    JWT_ALGORITHM: str = Field(default="HS256")

    TRANSITION_RETRY_BACKOFF_SECONDS: float = Field(
        default=0.05, ge=0, description="Pause before retrying a mutation that hit a lock conflict"
    )
    REPORT_TOP_N: int = Field(default=10, ge=1, description="Products listed by the sales by item report")
    REPORT_AGING_THRESHOLD_DAYS: int = Field(
        default=7, ge=0, description="Days in one stage after which an open order counts as value at risk"
    )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("CORS_ORIGINS", "CORS_ALLOW_METHODS", "CORS_ALLOW_HEADERS", mode="before")
    @classmethod
    def _split_list(cls, value):
        if value is None:
            return ["*"]
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                value = json.loads(text)
            else:
                value = [part.strip() for part in text.split(",") if part.strip()]
        return list(value) or ["*"]


# PUBLIC_INTERFACE
def get_app_settings() -> AppSettings:
    """Read AppSettings from the environment; not cached so tests can change env vars."""
    return AppSettings()
