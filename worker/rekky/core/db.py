"""Database helpers for the worker."""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from psycopg2 import pool

from rekky.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: Optional[int] = None) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool.

    Queue workers and request threads check connections out concurrently.
    ``maxconn`` defaults to ``DB_POOL_MAX_CONN``.
    """
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        maxconn = maxconn or settings.db_pool_max_conn
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised (maxconn=%d)", maxconn)
    return _connection_pool


def close_pool() -> None:
    """Close every pooled connection and forget the pool."""
    global _connection_pool
    if _connection_pool is not None:
        _connection_pool.closeall()
        _connection_pool = None
        logger.info("Database connection pool closed")


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


@contextmanager
def transaction() -> Iterator:
    """Yield a pooled connection wrapped in a single transaction.

    Commits when the block exits cleanly. Any exception rolls the whole
    transaction back and propagates unchanged.
    """
    with get_connection() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
