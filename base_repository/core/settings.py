from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from base_repository.core.env import load_env

DEFAULT_DATA_DIR = Path.home() / ".base_repository" / "data"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    database_url: str
    sql_echo: bool
    log_level: str
    log_json: bool
    log_file: str
    db_pool_size: int
    db_max_overflow: int
    db_pool_timeout: int
    db_pool_recycle: int
    default_page_size: int
    db_retry_max_attempts: int
    db_retry_base_delay: float
    db_retry_max_delay: float

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def _get_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _get_float(name: str, default: float, *, minimum: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _default_data_dir() -> Path:
    env_dir = os.getenv("DATA_DIR")
    if env_dir and env_dir.strip():
        return Path(env_dir).expanduser()
    return DEFAULT_DATA_DIR


def _normalize_sqlite_url(url: str) -> str:
    # plain sqlite URLs get the async driver
    if url.startswith("sqlite://") or url.startswith("sqlite:///"):
        return "sqlite+aiosqlite" + url[len("sqlite"):]
    return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_env()

    data_dir = _default_data_dir()

    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if not database_url:
        data_dir.mkdir(parents=True, exist_ok=True)
        database_url = f"sqlite+aiosqlite:///{data_dir / 'app.db'}"
    database_url = _normalize_sqlite_url(database_url)

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    db_retry_base_delay = _get_float("DB_RETRY_BASE_DELAY", 0.1, minimum=0.0)
    db_retry_max_delay = _get_float("DB_RETRY_MAX_DELAY", 2.0, minimum=0.0)
    if db_retry_max_delay < db_retry_base_delay:
        db_retry_max_delay = db_retry_base_delay

    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        sql_echo=_get_bool("SQL_ECHO", default=False),
        log_level=log_level,
        log_json=_get_bool("LOG_JSON", default=False),
        log_file=os.getenv("LOG_FILE", "").strip(),
        db_pool_size=_get_int("DB_POOL_SIZE", 20, minimum=1),
        db_max_overflow=_get_int("DB_MAX_OVERFLOW", 10, minimum=0),
        db_pool_timeout=_get_int("DB_POOL_TIMEOUT", 30, minimum=1),
        db_pool_recycle=_get_int("DB_POOL_RECYCLE", 3600, minimum=60),
        default_page_size=_get_int("DEFAULT_PAGE_SIZE", 10, minimum=1),
        db_retry_max_attempts=_get_int("DB_RETRY_MAX_ATTEMPTS", 3, minimum=1),
        db_retry_base_delay=db_retry_base_delay,
        db_retry_max_delay=db_retry_max_delay,
    )


__all__ = ["Settings", "get_settings"]
