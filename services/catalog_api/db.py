"""PostgreSQL access for the catalog API.

Connections come from a ``psycopg2`` thread pool. Request handlers receive a
:class:`DatabaseConnection` through the :func:`get_db` dependency and commit
their own writes; anything left open is rolled back when the request ends.
"""

import logging
import threading
from typing import Any, Iterator, Optional, Sequence

import psycopg2
from fastapi import HTTPException
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from services.catalog_api import config
from services.common.logging_utils import mask_dsn

logger = logging.getLogger("catalog-api.db")

_pool: Optional[ThreadedConnectionPool] = None
_pool_lock = threading.Lock()
# Bounds checked-out connections; ThreadedConnectionPool itself raises PoolError when exhausted.
_pool_slots = threading.BoundedSemaphore(config.DB_POOL_MAX)


def ssl_mode_candidates(preferred: str) -> list[str]:
    """Order in which SSL modes are tried: configured first, then require, then disable."""
    candidates = []
    for mode in (preferred, "require", "disable"):
        if mode and mode not in candidates:
            candidates.append(mode)
    return candidates


def _connect_kwargs(sslmode: str) -> dict:
    return {
        "sslmode": sslmode,
        "connect_timeout": config.DB_CONNECT_TIMEOUT,
        "options": "-c client_encoding=UTF8",
    }


def connect(url: str) -> "psycopg2.extensions.connection":
    """Open a single connection, falling back through SSL modes until one works."""
    if not url:
        raise ValueError("DATABASE_URL not set")

    last_error: Optional[Exception] = None
    for mode in ssl_mode_candidates(config.DB_SSL_MODE):
        try:
            conn = psycopg2.connect(url, **_connect_kwargs(mode))
            conn.set_client_encoding("UTF8")
            conn.autocommit = False
            logger.info("Connected to PostgreSQL at %s (sslmode=%s)", mask_dsn(url), mode)
            return conn
        except psycopg2.OperationalError as e:
            logger.warning("Connection attempt with sslmode=%s failed: %s", mode, str(e).strip())
            last_error = e
    if last_error is None:
        raise ValueError("No SSL mode to try")
    raise last_error


def get_pool() -> ThreadedConnectionPool:
    """Create the shared pool on first use."""
    global _pool
    if _pool is not None:
        return _pool

    with _pool_lock:
        if _pool is not None:
            return _pool
        if not config.DATABASE_URL:
            raise HTTPException(status_code=503, detail="Database not configured")

        last_error: Optional[Exception] = None
        for mode in ssl_mode_candidates(config.DB_SSL_MODE):
            try:
                _pool = ThreadedConnectionPool(
                    config.DB_POOL_MIN,
                    config.DB_POOL_MAX,
                    config.DATABASE_URL,
                    **_connect_kwargs(mode),
                )
                logger.info(
                    "Database pool ready (%s-%s connections, sslmode=%s) for %s",
                    config.DB_POOL_MIN,
                    config.DB_POOL_MAX,
                    mode,
                    mask_dsn(config.DATABASE_URL),
                )
                return _pool
            except psycopg2.OperationalError as e:
                logger.warning("Pool creation with sslmode=%s failed: %s", mode, str(e).strip())
                last_error = e
        if last_error is None:
            raise ValueError("No SSL mode to try")
        raise last_error


def close_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None
            logger.info("Database pool closed")


class DatabaseConnection:
    """PostgreSQL connection wrapper returning rows as dicts."""

    def __init__(self, conn: "psycopg2.extensions.connection"):
        self.conn = conn

    @classmethod
    def open(cls, url: str) -> "DatabaseConnection":
        """Open a standalone (non-pooled) connection, used by the admin CLI."""
        return cls(connect(url))

    def get_cursor(self) -> RealDictCursor:
        return self.conn.cursor(cursor_factory=RealDictCursor)

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        with self.get_cursor() as cursor:
            cursor.execute(sql, params)
            row = cursor.fetchone()
        return dict(row) if row is not None else None

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        with self.get_cursor() as cursor:
            cursor.execute(sql, params)
            rows = cursor.fetchall()
        return [dict(row) for row in rows]

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a statement and return the affected row count."""
        with self.get_cursor() as cursor:
            cursor.execute(sql, params)
            return cursor.rowcount

    def execute_script(self, sql: str) -> None:
        with self.conn.cursor() as cursor:
            cursor.execute(sql)

    def commit(self):
        if self.conn:
            self.conn.commit()

    def rollback(self):
        if self.conn and not self.conn.closed:
            self.conn.rollback()

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None


def checkout_connection() -> tuple[ThreadedConnectionPool, "psycopg2.extensions.connection"]:
    """Take a connection from the pool, waiting up to DB_POOL_WAIT_SECONDS for one to free up."""
    pool = get_pool()
    if not _pool_slots.acquire(timeout=config.DB_POOL_WAIT_SECONDS):
        logger.warning("No pooled connection freed up within %ss", config.DB_POOL_WAIT_SECONDS)
        raise HTTPException(status_code=503, detail="Database busy")
    try:
        return pool, pool.getconn()
    except Exception:
        _pool_slots.release()
        raise


def release_connection(pool: ThreadedConnectionPool, conn: "psycopg2.extensions.connection") -> None:
    """Roll back anything left open and hand the connection back to the pool."""
    try:
        if not conn.closed:
            conn.rollback()
    except psycopg2.Error:
        logger.warning("Rollback on connection release failed", exc_info=True)
    finally:
        try:
            pool.putconn(conn, close=bool(conn.closed))
        finally:
            _pool_slots.release()


def get_db() -> Iterator[DatabaseConnection]:
    """FastAPI dependency yielding a pooled connection for one request."""
    pool, conn = checkout_connection()
    try:
        yield DatabaseConnection(conn)
    finally:
        release_connection(pool, conn)


def server_time(db: DatabaseConnection) -> Any:
    row = db.fetch_one("SELECT NOW() AS current_time")
    return row["current_time"] if row else None
