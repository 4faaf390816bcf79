"""Environment-driven settings for the points ledger.

Every field can be overridden with a ``SCORES_``-prefixed environment
variable or a ``.env`` file in the working directory.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_prefix="SCORES_", env_file=".env", case_sensitive=False)

    app_name: str = "points-ledger"
    api_version: str = "1.0.0"

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    # API
    cors_origins: list[str] = ["*"]
    leaderboard_limit: int = 10


@lru_cache
def get_settings() -> Settings:
    return Settings()
