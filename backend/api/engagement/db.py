from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine

from engagement.config import get_settings
from engagement.errors import Timeout, Unavailable
from engagement.tables import metadata

logger = logging.getLogger(__name__)

_engine: Engine | None = None


def make_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def get_engine() -> Engine:
    global _engine

    if _engine is not None:
        return _engine

    _engine = make_engine(get_settings().database_url)
    return _engine


def init_schema(engine: Engine) -> None:
    """Create every table and index that is missing. Idempotent."""
    with storage_errors():
        metadata.create_all(engine, checkfirst=True)


def db_ping(engine: Engine) -> None:
    with storage_errors(), engine.begin() as conn:
        conn.execute(text("SELECT 1"))


@contextmanager
def storage_errors() -> Iterator[None]:
    """Translate driver failures into the core's Timeout / Unavailable errors."""
    try:
        yield
    except sa_exc.TimeoutError as e:
        logger.error("Storage timed out: %s", e)
        raise Timeout(str(e)) from e
    except sa_exc.OperationalError as e:
        message = str(e.orig) if e.orig is not None else str(e)
        if "timeout" in message.lower() or "locked" in message.lower():
            logger.error("Storage timed out: %s", message)
            raise Timeout(message) from e
        logger.error("Storage unavailable: %s", message)
        raise Unavailable(message) from e
    except sa_exc.DBAPIError as e:
        if e.connection_invalidated:
            logger.error("Storage connection lost: %s", e)
            raise Unavailable(str(e)) from e
        raise
