import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg2

from proposal_mirror.config.database_config import POSTGRES, SQLITE, DatabaseConfig
from proposal_mirror.services.connection_pool import DatabaseConnectionPool
from proposal_mirror.services.schema import SCHEMAS
from proposal_mirror.utils.logger import logger

# Unique or foreign key violations, for either driver
INTEGRITY_ERRORS = (sqlite3.IntegrityError, psycopg2.IntegrityError)


class Cursor:
    """DB-API cursor wrapper that speaks ``%s`` placeholders and returns dict rows."""

    def __init__(self, cursor, dialect: str):
        self._cursor = cursor
        self._dialect = dialect

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        if self._dialect == SQLITE:
            sql = sql.replace("%s", "?")
        self._cursor.execute(sql, tuple(params))
        return self._cursor.rowcount

    def fetchone(self) -> Optional[Dict[str, Any]]:
        row = self._cursor.fetchone()
        if row is None:
            return None
        return self._as_dict(row)

    def fetchall(self) -> List[Dict[str, Any]]:
        return [self._as_dict(row) for row in self._cursor.fetchall()]

    def _as_dict(self, row) -> Dict[str, Any]:
        column_names = [desc[0] for desc in self._cursor.description]
        return dict(zip(column_names, row))


class Database:
    """
    Connection handling for the mirror's store.

    SQLite keeps one connection for the life of the object (guarded by a lock,
    the file lock handles other processes). PostgreSQL borrows connections from
    a ``DatabaseConnectionPool`` per transaction.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self.dialect = self.config.dialect
        self._lock = threading.RLock()
        self._sqlite_conn: Optional[sqlite3.Connection] = None
        self._pool: Optional[DatabaseConnectionPool] = None

        if self.dialect == SQLITE:
            self._sqlite_conn = self._connect_sqlite()
        else:
            self._pool = DatabaseConnectionPool(self.config)

    @classmethod
    def from_url(cls, url: str) -> "Database":
        return cls(DatabaseConfig(url))

    def _connect_sqlite(self) -> sqlite3.Connection:
        path = self.config.sqlite_path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            path,
            timeout=self.config.busy_timeout_ms / 1000,
            check_same_thread=False,
        )
        if path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA foreign_keys = ON")
        logger.info("Database: opened SQLite store at %s", path)
        return conn

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Yield a raw DB-API connection."""
        if self.dialect == SQLITE:
            if self._sqlite_conn is None:
                raise RuntimeError("Database is closed")
            with self._lock:
                yield self._sqlite_conn
            return

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[Cursor]:
        """Run statements in one transaction; commit on success, roll back on error."""
        with self.connection() as conn:
            raw_cursor = conn.cursor()
            try:
                yield Cursor(raw_cursor, self.dialect)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                raw_cursor.close()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self.transaction() as cur:
            return cur.execute(sql, params)

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self.transaction() as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        start_time = time.perf_counter()
        with self.transaction() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        logger.debug("Database: query completed in %.3fs, %d rows", time.perf_counter() - start_time, len(rows))
        return rows

    def initialize_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        script = SCHEMAS[self.dialect]
        with self.connection() as conn:
            if self.dialect == SQLITE:
                conn.executescript(script)
                conn.commit()
                return
            try:
                with conn.cursor() as cur:
                    cur.execute(script)
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                logger.error("Database: schema initialization failed: %s", e, exc_info=True)
                raise RuntimeError(f"Schema initialization failed: {e}") from e
        logger.info("Database: schema ready (%s)", self.dialect)

    def get_stats(self) -> Dict[str, Any]:
        if self.dialect == POSTGRES:
            return {"dialect": POSTGRES, **self._pool.get_stats()}
        return {"dialect": SQLITE, "path": self.config.sqlite_path, "open": self._sqlite_conn is not None}

    def close(self) -> None:
        with self._lock:
            if self._sqlite_conn is not None:
                self._sqlite_conn.close()
                self._sqlite_conn = None
        if self._pool is not None:
            self._pool.close()
