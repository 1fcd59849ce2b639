"""
PostgreSQL connection pool for the mirror store.

Connections are checked with ``SELECT 1`` on checkout. After
``MAX_FAILURES`` consecutive failures the pool is dropped and checkouts fail
fast until ``BACKOFF_SECONDS`` have passed.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import psycopg2
from psycopg2 import pool

from proposal_mirror.config.database_config import DatabaseConfig
from proposal_mirror.utils.logger import logger

MAX_FAILURES = 3
BACKOFF_SECONDS = 30


class DatabaseConnectionPool:
    """Lazily created ``ThreadedConnectionPool`` with failure backoff."""

    def __init__(self, config: DatabaseConfig, min_connections: int = 1, max_connections: int = 5):
        self.config = config
        self.min_connections = min_connections
        self.max_connections = max_connections
        self._pool: Optional[pool.ThreadedConnectionPool] = None
        self._lock = threading.Lock()
        self._failures = 0
        self._failed_at = 0.0

    @property
    def in_backoff(self) -> bool:
        return self._failures >= MAX_FAILURES and time.time() - self._failed_at <= BACKOFF_SECONDS

    def _record_failure(self, what: str, error: Exception) -> None:
        self._failures += 1
        self._failed_at = time.time()
        logger.error("DatabaseConnectionPool: %s failed (%d in a row): %s", what, self._failures, error)
        if self._failures >= MAX_FAILURES:
            self._discard_pool()

    def _ensure_pool(self) -> pool.ThreadedConnectionPool:
        if self._pool is None:
            logger.info("DatabaseConnectionPool: connecting to %s (min=%d, max=%d)",
                        self.config.redacted_url(), self.min_connections, self.max_connections)
            self._pool = pool.ThreadedConnectionPool(
                self.min_connections, self.max_connections, **self.config.get_connection_params()
            )
        return self._pool

    def get_connection(self):
        """Check out a live connection. Raises ``RuntimeError`` while backing off."""
        with self._lock:
            if self.in_backoff:
                raise RuntimeError(
                    f"Database unavailable after {self._failures} failures, "
                    f"retrying after {BACKOFF_SECONDS}s"
                )
            try:
                conn = self._ensure_pool().getconn()
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                conn.rollback()
            except (psycopg2.Error, pool.PoolError) as e:
                self._record_failure("checkout", e)
                raise RuntimeError(f"Failed to get database connection: {e}") from e
            self._failures = 0
            return conn

    def return_connection(self, conn) -> None:
        """Hand a connection back; broken ones are closed instead of reused."""
        with self._lock:
            if self._pool is None:
                conn.close()
                return
            try:
                self._pool.putconn(conn, close=bool(conn.closed))
            except pool.PoolError as e:
                logger.warning("DatabaseConnectionPool: could not return connection: %s", e)

    @contextmanager
    def connection(self) -> Iterator[Any]:
        conn = self.get_connection()
        try:
            yield conn
        finally:
            self.return_connection(conn)

    def _discard_pool(self) -> None:
        if self._pool is None:
            return
        try:
            self._pool.closeall()
        except pool.PoolError as e:
            logger.warning("DatabaseConnectionPool: error closing pool: %s", e)
        self._pool = None
        logger.info("DatabaseConnectionPool: pool closed")

    def close(self) -> None:
        with self._lock:
            self._discard_pool()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "pool_open": self._pool is not None,
                "min_connections": self.min_connections,
                "max_connections": self.max_connections,
                "consecutive_failures": self._failures,
                "in_backoff": self.in_backoff,
            }
