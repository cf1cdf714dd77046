
# db.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as Connection
from psycopg2.pool import ThreadedConnectionPool

from settings import settings


class Database:
    """
    Owns a PostgreSQL connection pool.

    Constructed once by the application and handed to the stores that need it;
    nothing below the HTTP layer reaches for a module-level connection.
    """

    def __init__(self, dsn: str, *, maxconn: int = 10, application_name: str = "remodoc_payouts"):
        self._dsn = dsn
        self._maxconn = maxconn
        self._application_name = application_name
        self._pool: ThreadedConnectionPool | None = None

    def open(self) -> None:
        psycopg2.extras.register_uuid()
        if self._pool is None:
            self._pool = ThreadedConnectionPool(
                minconn=1,
                maxconn=self._maxconn,
                dsn=self._dsn,
                connect_timeout=5,
            )

    def close(self) -> None:
        if self._pool:
            self._pool.closeall()
            self._pool = None

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """
        Transactional connection: commits on success, rolls back on error.
        """
        if self._pool is None:
            self.open()

        conn = self._pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("SET statement_timeout = '5000ms';")
                cur.execute("SET idle_in_transaction_session_timeout = '5000ms';")
                cur.execute("SET application_name = %s;", (self._application_name,))

            yield conn
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            self._pool.putconn(conn)

    def ping(self) -> tuple[bool, str | None]:
        try:
            with self.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1;")
                    cur.fetchone()
            return True, None
        except Exception as exc:
            return False, f"{type(exc).__name__}: {exc}"


def build_database() -> Database:
    return Database(settings.DATABASE_URL, maxconn=settings.DB_POOL_MAX)
