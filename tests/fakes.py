"""
In-memory stand-ins for SQLAlchemy engines/connections and the audit sink.

``FakeDatabase`` answers the handful of statement shapes the service emits
(catalog lookups, COUNT, paged SELECT, cursor DECLARE/FETCH/CLOSE) from a
dict of tables.  Every executed statement is recorded so tests can assert on
SQL text and bound parameters.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import OperationalError

from tablegate.db.connection import DatabaseConnection, PoolRegistry


@dataclass
class FakeTable:
    columns: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)
    primary_key: list[str] = field(default_factory=list)
    data_types: dict[str, str] = field(default_factory=dict)
    count: int | None = None  # overrides len(rows) for COUNT(*)


class FakeResult:
    def __init__(self, rows: list[dict[str, Any]] | None = None, scalar: Any = None):
        self._rows = list(rows or [])
        self._scalar = scalar

    def scalar(self) -> Any:
        return self._scalar

    def fetchall(self) -> list[tuple]:
        return [tuple(r.values()) for r in self._rows]

    def mappings(self) -> "FakeResult":
        return self

    def all(self) -> list[dict[str, Any]]:
        return list(self._rows)

    def first(self) -> dict[str, Any] | None:
        return self._rows[0] if self._rows else None


class FakeDatabase:
    def __init__(self, tables: dict[str, FakeTable] | None = None):
        self.tables = dict(tables or {})
        self.statements: list[tuple[str, dict]] = []
        self.connections: list[FakeConnection] = []
        self.fail_on: str | None = None
        self.canned: list[tuple[str, list[dict[str, Any]]]] = []

    def add_table(self, name: str, table: FakeTable) -> None:
        self.tables[name] = table

    def respond(self, fragment: str, rows: list[dict[str, Any]]) -> None:
        """Serve *rows* for any statement containing *fragment*."""
        self.canned.append((fragment, rows))

    def sql_containing(self, fragment: str) -> list[tuple[str, dict]]:
        return [(sql, params) for sql, params in self.statements if fragment in sql]

    def _table(self, params: dict) -> FakeTable | None:
        return self.tables.get(f"{params.get('schema')}.{params.get('table')}")

    def _main_table(self, sql: str) -> FakeTable | None:
        m = re.search(r'FROM "(\w+)"\."(\w+)"', sql)
        return self.tables.get(f"{m.group(1)}.{m.group(2)}") if m else None

    def execute(self, sql: str, params: dict, cursors: dict[str, list]) -> FakeResult:
        self.statements.append((sql, dict(params or {})))
        if self.fail_on and self.fail_on in sql:
            raise OperationalError(sql, params, Exception("simulated failure"))

        for fragment, rows in self.canned:
            if fragment in sql:
                return FakeResult(rows)

        if sql.startswith("SET ") or sql.startswith("CLOSE "):
            return FakeResult()
        if "information_schema.tables" in sql and "table_type" in sql:
            rows = []
            for name in sorted(self.tables):
                schema, table = name.split(".")
                rows.append({"table_schema": schema, "table_name": table})
            return FakeResult(rows)
        if "information_schema.tables" in sql:
            table = self._table(params)
            return FakeResult([{"table_name": params["table"]}] if table else [])
        if "PRIMARY KEY" in sql:
            table = self._table(params)
            return FakeResult([{"column_name": c} for c in (table.primary_key if table else [])])
        if "information_schema.columns" in sql:
            table = self._table(params)
            if table is None:
                return FakeResult()
            return FakeResult([
                {"column_name": c, "data_type": table.data_types.get(c, "text"), "is_nullable": "YES"}
                for c in table.columns
            ])
        if sql.startswith("SELECT COUNT(*)"):
            table = self._main_table(sql)
            total = 0 if table is None else (table.count if table.count is not None else len(table.rows))
            return FakeResult([{"count": total}], scalar=total)
        if sql.startswith("DECLARE "):
            name = sql.split()[1]
            table = self._main_table(sql)
            cursors[name] = list(table.rows) if table else []
            return FakeResult()
        if sql.startswith("FETCH FORWARD"):
            m = re.match(r"FETCH FORWARD (\d+) FROM (\w+)", sql)
            n, name = int(m.group(1)), m.group(2)
            batch, cursors[name] = cursors[name][:n], cursors[name][n:]
            return FakeResult(batch)
        if sql.startswith("SELECT"):
            table = self._main_table(sql)
            rows = list(table.rows) if table else []
            offset = re.search(r"OFFSET (\d+)", sql)
            limit = re.search(r"LIMIT (\d+)", sql)
            start = int(offset.group(1)) if offset else 0
            end = start + int(limit.group(1)) if limit else None
            return FakeResult(rows[start:end])
        return FakeResult()


class FakeTransaction:
    def __init__(self, conn: "FakeConnection"):
        self._conn = conn

    def commit(self) -> None:
        self._conn.committed = True

    def rollback(self) -> None:
        self._conn.rolled_back = True

    def __enter__(self) -> "FakeTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()


class FakeConnection:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self.committed = False
        self.rolled_back = False
        self.closed = False
        self.closed_by: str | None = None
        self._cursors: dict[str, list] = {}

    def execute(self, clause: Any, params: dict | None = None) -> FakeResult:
        return self.db.execute(str(clause).strip(), params or {}, self._cursors)

    def begin(self) -> FakeTransaction:
        return FakeTransaction(self)

    def commit(self) -> None:
        self.committed = True

    def close(self) -> None:
        self.closed = True
        self.closed_by = threading.current_thread().name

    def __enter__(self) -> "FakeConnection":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class FakeEngine:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self.disposed = False

    def connect(self) -> FakeConnection:
        conn = FakeConnection(self.db)
        self.db.connections.append(conn)
        return conn

    def dispose(self) -> None:
        self.disposed = True


def fake_registry(databases: dict[str, FakeDatabase]) -> PoolRegistry:
    """Real ``PoolRegistry`` whose engines are ``FakeEngine`` objects."""
    by_url = {f"postgresql://fake/{name}": db for name, db in databases.items()}

    def factory(url: str, **kwargs: Any) -> FakeEngine:
        return FakeEngine(by_url[url])

    return PoolRegistry(
        [DatabaseConnection(name=name, url=f"postgresql://fake/{name}") for name in databases],
        engine_factory=factory,
    )


class RecordingAudit:
    """Audit sink that keeps entries in memory."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    def log(self, user_id, user_email, action, database=None, table=None, details=None, ip=None) -> None:
        self.entries.append({
            "user_id": user_id, "user_email": user_email, "action": action,
            "database": database, "table": table, "details": details, "ip": ip,
        })

    def actions(self) -> list[str]:
        return [e["action"] for e in self.entries]


class FakeCatalog:
    """Catalog double for access-gate tests."""

    def __init__(self, tables: dict[str, list[str]]):
        self._tables = tables

    def table_exists(self, ref) -> bool:
        return ref.full_name in self._tables

    def columns(self, ref) -> list[str]:
        return list(self._tables.get(ref.full_name, []))
