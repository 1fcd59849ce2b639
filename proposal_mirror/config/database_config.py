"""
Database configuration and validation utilities.

The mirror runs on SQLite for a local, single-file store and on PostgreSQL
when a shared database is preferred. Both are described by one DATABASE_URL.
"""

import os
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, unquote, urlparse

from proposal_mirror.config.settings import DATABASE_URL
from proposal_mirror.utils.logger import logger

SQLITE = "sqlite"
POSTGRES = "postgresql"


class DatabaseConfig:
    """Centralized database configuration with validation."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or DATABASE_URL
        self._config = self._load_config(self.url)
        self._validate_config()

    def _load_config(self, url: str) -> Dict[str, Any]:
        """Parse the database URL into dialect-specific settings."""
        parsed = urlparse(url)
        scheme = (parsed.scheme or "").split("+")[0]

        if scheme == SQLITE:
            # sqlite:///relative/path.db, sqlite:////abs/path.db, sqlite:///:memory:
            path = url.split(":///", 1)[1] if ":///" in url else ""
            return {
                'dialect': SQLITE,
                'path': path or ":memory:",
                'busy_timeout_ms': int(os.environ.get("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            }

        if scheme in ("postgres", POSTGRES):
            query = parse_qs(parsed.query)
            sslmode = query.get("sslmode", [os.environ.get("PGSSLMODE", "prefer")])[0]
            return {
                'dialect': POSTGRES,
                'host': parsed.hostname,
                'port': parsed.port or int(os.environ.get("DATABASE_PORT", "5432")),
                'database': parsed.path.lstrip('/') if parsed.path else None,
                'user': parsed.username,
                'password': unquote(parsed.password or ""),
                'connect_timeout': int(os.environ.get("DB_CONNECT_TIMEOUT", "10")),
                'statement_timeout_ms': int(os.environ.get("DB_STATEMENT_TIMEOUT_MS", "60000")),
                'application_name': os.environ.get("DB_APPLICATION_NAME", "proposal-mirror"),
                'sslmode': sslmode,
            }

        return {'dialect': scheme}

    def _validate_config(self) -> None:
        """Validate that all required configuration is present."""
        dialect = self._config.get('dialect')
        if dialect not in (SQLITE, POSTGRES):
            error_msg = f"Unsupported DATABASE_URL scheme: {dialect or '<empty>'}"
            logger.error("DatabaseConfig: %s", error_msg)
            raise RuntimeError(error_msg)

        if dialect == POSTGRES:
            missing_fields = [
                field for field in ('host', 'database', 'user') if not self._config.get(field)
            ]
            if missing_fields:
                error_msg = f"DATABASE_URL is missing: {', '.join(missing_fields)}"
                logger.error("DatabaseConfig: %s", error_msg)
                raise RuntimeError(error_msg)

    @property
    def dialect(self) -> str:
        return self._config['dialect']

    @property
    def sqlite_path(self) -> str:
        return self._config['path']

    @property
    def busy_timeout_ms(self) -> int:
        return self._config.get('busy_timeout_ms', 5000)

    def get_connection_params(self) -> Dict[str, Any]:
        """Get connection parameters for psycopg2."""
        if self.dialect != POSTGRES:
            raise RuntimeError("Connection parameters are only defined for PostgreSQL")
        return {
            'host': self._config['host'],
            'port': self._config['port'],
            'database': self._config['database'],
            'user': self._config['user'],
            'password': self._config['password'],
            'connect_timeout': self._config['connect_timeout'],
            'application_name': self._config['application_name'],
            'sslmode': self._config['sslmode'],
            'options': f"-c statement_timeout={self._config['statement_timeout_ms']}",
        }

    def redacted_url(self) -> str:
        """Connection string for logs, password redacted."""
        if self.dialect == SQLITE:
            return f"sqlite:///{self.sqlite_path}"
        return (
            f"postgresql://{self._config['user']}:***@{self._config['host']}:"
            f"{self._config['port']}/{self._config['database']}"
        )
