import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    env: str
    database_url: str
    log_level: str

    db_connect_retries: int
    db_connect_retry_delay: float


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def load_settings() -> Settings:
    return Settings(
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///odp.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        db_connect_retries=int(_getenv("DB_CONNECT_RETRIES", "5")),
        db_connect_retry_delay=float(_getenv("DB_CONNECT_RETRY_DELAY", "2")),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        # substrate bring-up only; transactional operations are never retried
        "DB_CONNECT_RETRIES": s.db_connect_retries,
        "DB_CONNECT_RETRY_DELAY": s.db_connect_retry_delay,
        "JSON_SORT_KEYS": False,
    }
