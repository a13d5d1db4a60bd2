"""Runtime configuration for scorestore."""

from __future__ import annotations

import os
from functools import lru_cache

from dotenv import load_dotenv

__all__: list[str] = ["Settings", "get_settings"]


class Settings:  # noqa: D101
    def __init__(self) -> None:
        self.database_url: str | None = os.getenv("SCORESTORE_DATABASE_URL") or os.getenv(
            "TIMESCALE_SERVICE_URL"
        )
        self.scores_table: str = os.getenv("SCORESTORE_SCORES_TABLE", "evaluation_scores")
        self.database_ssl: str = os.getenv("SCORESTORE_DATABASE_SSL", "require")
        self.pool_size: int = int(os.getenv("SCORESTORE_POOL_SIZE", "20"))
        self.max_overflow: int = int(os.getenv("SCORESTORE_MAX_OVERFLOW", "30"))
        self.pool_timeout: float = float(os.getenv("SCORESTORE_POOL_TIMEOUT", "30"))
        self.command_timeout: float = float(os.getenv("SCORESTORE_COMMAND_TIMEOUT", "60"))
        self.log_level: str = os.getenv("SCORESTORE_LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:  # noqa: D401
    """Return cached Settings instance."""

    load_dotenv()
    return Settings()
