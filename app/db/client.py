from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.pool import SimpleConnectionPool

from app.config import Settings

logger = logging.getLogger(__name__)


class Database:
    """Lazily opened psycopg2 pool; ``connection()`` yields None when no DSN is set."""

    def __init__(self, dsn: str, schema: str = "", max_connections: int = 10):
        self.dsn = dsn
        self.schema = schema
        self.max_connections = max(1, max_connections)
        self._pool: Optional[SimpleConnectionPool] = None

    @classmethod
    def from_settings(cls, cfg: Settings) -> "Database":
        return cls(cfg.db_dsn, cfg.db_schema, cfg.db_max_connections)

    @property
    def enabled(self) -> bool:
        return bool(self.dsn)

    def open(self) -> Optional[SimpleConnectionPool]:
        if self._pool is None and self.enabled:
            self._pool = SimpleConnectionPool(1, self.max_connections, dsn=self.dsn)
            logger.info("db pool opened", extra={"event": "db_open"})
        return self._pool

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("db pool closed", extra={"event": "db_close"})

    def _checkout(self, pool: SimpleConnectionPool) -> psycopg2.extensions.connection:
        # A pooled connection may have been dropped by the server; retry once.
        for attempt in range(2):
            conn = pool.getconn()
            try:
                if self.schema:
                    with conn.cursor() as cur:
                        cur.execute(sql.SQL("SET search_path TO {}").format(sql.Identifier(self.schema)))
                return conn
            except (psycopg2.OperationalError, psycopg2.InterfaceError):
                pool.putconn(conn, close=True)
                if attempt == 1:
                    raise
        raise psycopg2.OperationalError("no usable connection in pool")

    @contextmanager
    def connection(self) -> Iterator[Optional[psycopg2.extensions.connection]]:
        """Commit on success, roll back on error, always return the connection."""
        pool = self.open()
        if pool is None:
            yield None
            return
        conn = self._checkout(pool)
        try:
            yield conn
            conn.commit()
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            pool.putconn(conn)
