"""Pooled Postgres access with explicit transactions."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, TypeVar

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from vppadmin.storage.pg_config import CONNECT_TIMEOUT_SECONDS, DbCredentials, build_conninfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

POOL_MAX_SIZE = 10
POOL_MIN_SIZE = 1
DIRECT_CONNECT_TIMEOUT_SECONDS = 5


class Database:
    """Owns one connection pool for one set of credentials."""

    def __init__(
        self,
        credentials: DbCredentials,
        *,
        min_size: int = POOL_MIN_SIZE,
        max_size: int = POOL_MAX_SIZE,
        timeout: float = CONNECT_TIMEOUT_SECONDS,
    ):
        self.credentials = credentials
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self._pool: Optional[ConnectionPool] = None
        self._lock = threading.Lock()

    @property
    def pool(self) -> ConnectionPool:
        if self._pool is None:
            with self._lock:
                if self._pool is None:
                    self._pool = ConnectionPool(
                        build_conninfo(self.credentials, connect_timeout=int(self.timeout)),
                        min_size=self.min_size,
                        max_size=self.max_size,
                        timeout=self.timeout,
                        kwargs={"row_factory": dict_row},
                        name="vpp-admin",
                        open=True,
                    )
        return self._pool

    def _direct_connect_error(self) -> Optional[psycopg.Error]:
        """Open one connection outside the pool and return why it failed, if it did.

        The pool retries failed connects in the background, so a checkout
        only ever reports PoolTimeout; a direct attempt surfaces the server's
        own error (rejected password, unknown database, TLS failure).
        """
        try:
            conn = psycopg.connect(
                build_conninfo(self.credentials, connect_timeout=DIRECT_CONNECT_TIMEOUT_SECONDS)
            )
        except psycopg.Error as e:
            return e
        conn.close()
        return None

    def getconn(self) -> psycopg.Connection:
        pool = self.pool
        try:
            return pool.getconn()
        except PoolTimeout as timeout_error:
            cause = self._direct_connect_error()
            if cause is None:
                raise
            logger.error(f"db_pool_connect_failed error_type={type(cause).__name__} sql_state={cause.sqlstate}")
            raise cause from timeout_error

    def run_in_transaction(self, body: Callable[[psycopg.Connection], T]) -> T:
        """Run `body(conn)` in one transaction.

        Commits on success. On any exception the transaction is rolled back
        and the original exception propagates; a failed rollback is only
        logged. The connection always goes back to the pool.
        """
        conn = self.getconn()
        pool = self.pool
        try:
            result = body(conn)
            conn.commit()
            return result
        except Exception:
            try:
                conn.rollback()
            except Exception as rollback_error:
                logger.error(f"db_transaction_rollback_failed error={rollback_error}")
            raise
        finally:
            pool.putconn(conn)

    def close(self) -> None:
        with self._lock:
            if self._pool is not None:
                self._pool.close()
                self._pool = None


class DatabaseProvider:
    """Hands out a Database, rebuilding the pool when credentials change."""

    def __init__(self, factory: Callable[[DbCredentials], Database] = Database):
        self._factory = factory
        self._database: Optional[Database] = None
        self._lock = threading.Lock()

    def get(self, credentials: DbCredentials) -> Database:
        with self._lock:
            current = self._database
            if current is not None and current.credentials == credentials:
                return current
            if current is not None:
                logger.info("db_pool_rebuild reason=credentials_changed")
                current.close()
            self._database = self._factory(credentials)
            return self._database

    def close(self) -> None:
        with self._lock:
            if self._database is not None:
                self._database.close()
                self._database = None
