"""SQLAlchemy engine registry -- one small pool per configured database.

Engines are created lazily on first use of a database name and disposed at
shutdown.  The registry is handed to the service layer explicitly (FastAPI
dependency), so tests substitute their own.  All browsing reads go through
`readonly_connection`, which sets the transaction to READ ONLY and applies
a statement timeout before yielding.
"""
from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from tablegate.core.config import get_settings
from tablegate.core.errors import NotFound, QueryFailed
from tablegate.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DatabaseConnection:
    name: str
    url: str


def parse_database_urls(raw: str | None) -> list[DatabaseConnection]:
    """Parse ``DATABASE_URLS``.

    Accepts a JSON array of ``{"name": ..., "url": ...}`` objects or a
    single ``postgres://`` URL, which is registered as ``Default``.
    Malformed input is logged and yields an empty list.
    """
    if not raw or not raw.strip():
        return []
    trimmed = raw.strip()

    if trimmed.startswith("["):
        try:
            parsed = json.loads(trimmed)
        except json.JSONDecodeError:
            logger.error("Failed to parse DATABASE_URLS as JSON")
            return []
        if not isinstance(parsed, list):
            logger.error("DATABASE_URLS JSON must be an array")
            return []
        return [
            DatabaseConnection(name=str(d["name"]), url=str(d["url"]))
            for d in parsed
            if isinstance(d, dict) and d.get("name") and d.get("url")
        ]

    if trimmed.startswith(("postgres://", "postgresql://")):
        return [DatabaseConnection(name="Default", url=trimmed)]

    logger.error("DATABASE_URLS must be a JSON array or a postgres:// connection string")
    return []


def _sqlalchemy_url(url: str) -> str:
    # SQLAlchemy only recognises the ``postgresql`` scheme
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


class PoolRegistry:
    """Lazily-built map of database name -> pooled SQLAlchemy engine."""

    def __init__(
        self,
        connections: list[DatabaseConnection],
        *,
        pool_size: int = 5,
        pool_timeout: int = 30,
        statement_timeout_ms: int = 30_000,
        ssl_reject_unauthorized: bool = True,
        engine_factory: Callable[..., Engine] = create_engine,
    ):
        self._connections = {c.name: c for c in connections}
        self._engines: dict[str, Engine] = {}
        self._lock = threading.Lock()
        self._pool_size = pool_size
        self._pool_timeout = pool_timeout
        self._statement_timeout_ms = statement_timeout_ms
        self._ssl_reject_unauthorized = ssl_reject_unauthorized
        self._engine_factory = engine_factory

    def names(self) -> list[str]:
        return list(self._connections)

    def has(self, name: str) -> bool:
        return name in self._connections

    def get_engine(self, name: str) -> Engine:
        """Return the engine for *name*, creating its pool on first use."""
        with self._lock:
            engine = self._engines.get(name)
            if engine is not None:
                return engine
            conn = self._connections.get(name)
            if conn is None:
                raise NotFound(f"Database not found: {name}")

            connect_args: dict[str, Any] = {}
            if not self._ssl_reject_unauthorized:
                connect_args["sslmode"] = "require"

            engine = self._engine_factory(
                _sqlalchemy_url(conn.url),
                pool_pre_ping=True,
                pool_size=self._pool_size,
                max_overflow=0,
                pool_timeout=self._pool_timeout,
                connect_args=connect_args,
            )
            self._engines[name] = engine
            logger.info("DB engine created  db=%s  pool_size=%d", name, self._pool_size)
            return engine

    @contextmanager
    def readonly_connection(self, name: str, timeout_ms: int | None = None) -> Generator[Connection, None, None]:
        """Yield a connection inside a READ ONLY transaction.

        Database errors are logged and re-raised as ``QueryFailed``; the
        transaction is rolled back and the connection returned to the pool.
        """
        engine = self.get_engine(name)
        timeout = int(timeout_ms if timeout_ms is not None else self._statement_timeout_ms)
        try:
            with engine.connect() as conn, conn.begin():
                conn.execute(text("SET TRANSACTION READ ONLY"))
                conn.execute(text(f"SET LOCAL statement_timeout = {timeout}"))
                yield conn
        except SQLAlchemyError as exc:
            logger.exception("Query failed on database=%s", name)
            raise QueryFailed("Failed to execute query") from exc

    def dispose(self) -> None:
        with self._lock:
            for name, engine in self._engines.items():
                engine.dispose()
                logger.info("DB engine disposed  db=%s", name)
            self._engines.clear()


@lru_cache
def get_registry() -> PoolRegistry:
    """Return the process-wide registry built from settings."""
    settings = get_settings()
    return PoolRegistry(
        parse_database_urls(settings.database_urls),
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
        statement_timeout_ms=settings.db_statement_timeout_ms,
        ssl_reject_unauthorized=settings.db_ssl_reject_unauthorized,
    )


@lru_cache
def get_app_engine() -> Engine:
    """Engine for the application database (users, grants, audit log)."""
    settings = get_settings()
    engine = create_engine(
        _sqlalchemy_url(settings.app_database_url),
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=0,
        echo=False,
    )
    logger.info("App DB engine created")
    return engine
