"""
Requester lookup: users and their table grants.

Authentication itself lives outside this service; the API only receives a
user id.  ``UserDirectory`` resolves that id to a ``User`` and lists the
``(database, "schema.table")`` grants the access gate checks.  Grants are
re-read on every request so a revocation takes effect immediately.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from tablegate.core.errors import InvalidIdentifier, QueryFailed
from tablegate.core.logging import get_logger
from tablegate.db.connection import get_app_engine
from tablegate.governance.access import User
from tablegate.governance.identifiers import parse_table_name

logger = get_logger(__name__)

_USER_SQL = text("""
    SELECT id, email, role, is_active
    FROM users
    WHERE id::text = :user_id
""")

_GRANTS_SQL = text("""
    SELECT database, table_name
    FROM table_grants
    WHERE user_id::text = :user_id
""")


class UserDirectory(Protocol):
    def get_user(self, user_id: str) -> User | None: ...

    def grants_for(self, user_id: str) -> list[tuple[str, str]]: ...


def normalise_grants(rows: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Canonicalise grant table names to ``schema.table``; bad names are dropped."""
    grants = []
    for database, table in rows:
        try:
            grants.append((database, parse_table_name(table).full_name))
        except InvalidIdentifier:
            logger.warning("Ignoring malformed grant db=%s table=%r", database, table)
    return grants


class SqlUserDirectory:
    """Reads ``users`` and ``table_grants`` from the application database."""

    def __init__(self, engine: Engine | None = None):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_app_engine()
        return self._engine

    def get_user(self, user_id: str) -> User | None:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_USER_SQL, {"user_id": str(user_id)}).mappings().first()
        except SQLAlchemyError as exc:
            logger.exception("User lookup failed")
            raise QueryFailed("Failed to load user") from exc
        if row is None:
            return None
        return User(id=str(row["id"]), email=row["email"], role=row["role"], is_active=bool(row["is_active"]))

    def grants_for(self, user_id: str) -> list[tuple[str, str]]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(_GRANTS_SQL, {"user_id": str(user_id)}).fetchall()
        except SQLAlchemyError as exc:
            logger.exception("Grant lookup failed")
            raise QueryFailed("Failed to load table grants") from exc
        return normalise_grants((r[0], r[1]) for r in rows)


class InMemoryUserDirectory:
    """Directory backed by plain dicts (local development and tests)."""

    def __init__(self, users: Iterable[User] = (), grants: dict[str, list[tuple[str, str]]] | None = None):
        self._users = {u.id: u for u in users}
        self._grants = {uid: normalise_grants(g) for uid, g in (grants or {}).items()}

    def add(self, user: User, grants: Iterable[tuple[str, str]] = ()) -> None:
        self._users[user.id] = user
        self._grants[user.id] = normalise_grants(grants)

    def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def grants_for(self, user_id: str) -> list[tuple[str, str]]:
        return list(self._grants.get(user_id, []))


@lru_cache
def get_user_directory() -> UserDirectory:
    return SqlUserDirectory()
