from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# This file is backend/api/engagement/config.py
BACKEND_API_DIR = Path(__file__).resolve().parents[1]


def _load_env_once() -> None:
    """
    Loads .env from:
      1) ENV_PATH if provided
      2) backend/api/.env (project default)
      3) current working directory .env (fallback)
    """
    env_path = os.getenv("ENV_PATH")
    if env_path:
        p = Path(env_path)
        if p.exists():
            load_dotenv(p, override=False)
            return

    p2 = BACKEND_API_DIR / ".env"
    if p2.exists():
        load_dotenv(p2, override=False)
        return

    p3 = Path.cwd() / ".env"
    if p3.exists():
        load_dotenv(p3, override=False)


@dataclass(frozen=True)
class Settings:
    database_url: str
    slug_suffix_ceiling: int = 10_000
    lock_timeout: float = 5.0
    curated_limit: int = 10
    curated_top_topics: int = 3
    worker_interval: float = 10.0
    log_level: str = "INFO"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_env_once()

    db_url = os.getenv("DATABASE_URL") or os.getenv("DB_URL")
    if not db_url:
        tried = [
            f"ENV_PATH={os.getenv('ENV_PATH')}",
            str(BACKEND_API_DIR / ".env"),
            str(Path.cwd() / ".env"),
        ]
        raise RuntimeError(
            "DATABASE_URL is not set. Ensure it exists in backend/api/.env or set ENV_PATH.\n"
            f"Tried: {', '.join(tried)}"
        )

    return Settings(
        database_url=db_url,
        slug_suffix_ceiling=_env_int("SLUG_SUFFIX_CEILING", 10_000),
        lock_timeout=_env_float("LOCK_TIMEOUT_SECONDS", 5.0),
        curated_limit=_env_int("CURATED_LIMIT", 10),
        curated_top_topics=_env_int("CURATED_TOP_TOPICS", 3),
        worker_interval=_env_float("WORKER_INTERVAL_SECONDS", 10.0),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
