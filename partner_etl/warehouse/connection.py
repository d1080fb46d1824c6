"""
Shared psycopg 3 pool for the PostgreSQL stores.

Staging a job and committing a job's catalog rows are multi-statement writes
and go through transaction(). Lost connections, pool exhaustion and
serialization failures surface as StorageUnavailable, which the coordinator
retries like any other transient dependency failure.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError, errors
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from partner_etl.core.errors import StorageUnavailable
from partner_etl.observability.logger import get_logger

logger = get_logger(__name__)

# Failures that say nothing about the job's data; a later attempt can succeed
_TRANSIENT_DB_ERRORS = (
    OperationalError,
    PoolTimeout,
    errors.SerializationFailure,
    errors.DeadlockDetected,
)


class DatabaseConnectionPool:
    """
    Pool of dict-row connections to the pipeline database.

    Args:
        host: Database host (DB_HOST, default localhost)
        port: Database port (DB_PORT, default 5432)
        database: Database name (DB_NAME, default partner_etl)
        user: Database user (DB_USER, default pipeline)
        password: Database password (DB_PASSWORD, required)
        min_size: Connections kept open
        max_size: Upper bound; concurrent files beyond it wait for a connection
        timeout: Seconds to wait for a connection
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 10,
        timeout: float = 30.0,
    ) -> None:
        password = password or os.getenv("DB_PASSWORD")
        if not password:
            raise ValueError("Database password missing: set DB_PASSWORD or pass password=")

        self.database = database or os.getenv("DB_NAME", "partner_etl")
        self.conninfo = make_conninfo(
            host=host or os.getenv("DB_HOST", "localhost"),
            port=port or int(os.getenv("DB_PORT", "5432")),
            dbname=self.database,
            user=user or os.getenv("DB_USER", "pipeline"),
            password=password,
            connect_timeout=int(timeout),
            application_name="partner-etl",
        )
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self._pool: ConnectionPool | None = None

    def open(self, attempts: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, waiting for the first connection.

        Raises:
            StorageUnavailable: If the database is still unreachable after all attempts
        """
        if self._pool is not None:
            return

        for attempt in range(1, attempts + 1):
            pool = ConnectionPool(
                conninfo=self.conninfo,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.timeout,
                kwargs={"row_factory": dict_row},
                open=False,
            )
            try:
                pool.open(wait=True, timeout=self.timeout)
            except (OperationalError, PoolTimeout) as e:
                pool.close()
                logger.warning(
                    "Database not reachable",
                    extra={"database": self.database, "attempt": attempt, "error_message": str(e)},
                )
                if attempt == attempts:
                    raise StorageUnavailable(f"Database {self.database} unreachable after {attempts} attempts") from e
                time.sleep(retry_delay)
            else:
                self._pool = pool
                logger.info("Database pool open", extra={"database": self.database, "max_size": self.max_size})
                return

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def connection(self):
        if self._pool is None:
            raise RuntimeError("Database pool is not open")
        try:
            with self._pool.connection() as conn:
                yield conn
        except _TRANSIENT_DB_ERRORS as e:
            raise StorageUnavailable(f"Database unavailable: {type(e).__name__}: {e}") from e

    @contextmanager
    def transaction(self):
        """
        Cursor inside one transaction: committed when the block exits normally,
        rolled back when it raises (the exception propagates unchanged unless
        it is a transient database failure).
        """
        with self.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    yield cur

    def execute_query(self, query: str, params: tuple | None = None) -> list[dict]:
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def execute_command(self, command: str, params: tuple | None = None) -> int:
        """Single write statement in its own transaction; returns the affected row count."""
        with self.transaction() as cur:
            cur.execute(command, params)
            return cur.rowcount
