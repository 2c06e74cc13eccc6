import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./recordquery.db"


def _env_bool(name: str, default: bool = False) -> bool:
    v = (os.environ.get(name) or "").strip().lower()
    if not v:
        return default
    if v in ("true", "1", "yes", "on"):
        return True
    if v in ("false", "0", "no", "off"):
        return False
    return default


@dataclass
class Settings:
    """Settings loaded from environment variables with safe defaults."""

    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    echo: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings from environment variables."""
        db_url = (
            os.getenv("RECORDQUERY_DATABASE_URL")
            or os.getenv("DATABASE_URL")
            or cls.database_url
        )
        return cls(
            database_url=db_url,
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            echo=_env_bool("DB_ECHO", cls.echo),
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings.from_env()
