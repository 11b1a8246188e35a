"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Quota applied when a cycle is created without an explicit max_votes_per_user.
DEFAULT_MAX_VOTES_PER_USER = 3


class Settings(BaseSettings):
    """Civic budget engine configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Database
    database_url: str = "sqlite+aiosqlite:///civicbudget.db"
    civic_db_busy_timeout_seconds: int = Field(default=15, ge=1)

    # Environment
    civic_env: str = "development"

    # Cycles
    civic_default_max_votes_per_user: int = Field(default=DEFAULT_MAX_VOTES_PER_USER, ge=1)

    # Logging
    civic_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _reject_memory_db_in_production(self) -> Settings:
        """An in-memory database loses every vote on restart; refuse it in production."""
        if self.civic_env == "production" and ":memory:" in self.database_url:
            msg = "DATABASE_URL must point at a persistent database in production."
            raise ValueError(msg)
        return self
