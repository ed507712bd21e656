"""
PostgreSQL access for the auth tables.

One psycopg2 ThreadedConnectionPool per PostgresClient. The application opens
the client at startup and closes it at shutdown; there is no module-level pool.

Each call borrows a connection and runs in its own transaction; transaction()
spans several statements when a step must not commit halfway. The auth
protocol's single-use transitions are single UPDATE/DELETE ... RETURNING
statements.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)

Params = Tuple | Dict | None


def adapt_params(value: Any) -> Any:
    """UUIDs to str, recursing into tuples, lists and dicts."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (list, tuple)):
        return type(value)(adapt_params(v) for v in value)
    if isinstance(value, dict):
        return {k: adapt_params(v) for k, v in value.items()}
    return value


class PostgresClient:
    """
    Pooled PostgreSQL client returning rows as plain dicts.

    Usage:
        db = PostgresClient(database_url)
        row = db.execute_single("SELECT * FROM users WHERE email = %s", (email,))
        db.close()
    """

    def __init__(
        self,
        database_url: str,
        min_connections: int = 2,
        max_connections: int = 20,
        statement_timeout_ms: int = 5000,
    ):
        if not database_url:
            raise ValueError("database_url is required")

        self._lock = threading.Lock()
        self._pool: psycopg2.pool.ThreadedConnectionPool | None = psycopg2.pool.ThreadedConnectionPool(
            minconn=min_connections,
            maxconn=max_connections,
            dsn=database_url,
            connect_timeout=30,
            application_name="alt_auth",
            options=f"-c statement_timeout={statement_timeout_ms}",
        )
        logger.info(f"Postgres pool ready ({min_connections}-{max_connections} connections)")

    @property
    def closed(self) -> bool:
        return self._pool is None

    @contextmanager
    def get_connection(self):
        """Borrow a connection; commit when the block exits cleanly, else roll back."""
        with self._lock:
            pool = self._pool
        if pool is None:
            raise RuntimeError("PostgresClient is closed")

        conn = pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    @contextmanager
    def transaction(self):
        """A RealDictCursor whose statements commit together or not at all.

        Parameters passed to cur.execute() are not run through adapt_params.
        """
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                yield cur

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Run one statement. Rows come back as dicts; [] when there is no result set."""
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, adapt_params(params))
                if cur.description is None:
                    return []
                return [dict(row) for row in cur.fetchall()]

    def execute_single(self, query: str, params: Params = None) -> Dict[str, Any] | None:
        rows = self.execute(query, params)
        return rows[0] if rows else None

    def execute_script(self, sql: str) -> None:
        """Multi-statement DDL in a single transaction."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql)

    def ping(self) -> bool:
        """Raises psycopg2.Error when the database cannot be reached."""
        self.execute("SELECT 1")
        return True

    def close(self) -> None:
        """Release every pooled connection. A second call does nothing."""
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.closeall()
            logger.info("Postgres pool closed")
