"""
Live catalog lookups against ``information_schema``.

Every lookup is parameterised and runs on the caller's connection, so the
answers reflect the schema at request time.  Nothing here is cached.
"""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.engine import Connection

from tablegate.governance.identifiers import TableRef

_TABLE_EXISTS_SQL = text("""
    SELECT table_name FROM information_schema.tables
    WHERE table_schema = :schema AND table_name = :table
""")

_LIST_TABLES_SQL = text("""
    SELECT table_schema, table_name
    FROM information_schema.tables
    WHERE table_type = 'BASE TABLE'
      AND table_schema NOT IN ('pg_catalog', 'information_schema')
    ORDER BY table_schema, table_name
""")

_COLUMNS_SQL = text("""
    SELECT column_name, data_type, is_nullable
    FROM information_schema.columns
    WHERE table_schema = :schema AND table_name = :table
    ORDER BY ordinal_position
""")

_PRIMARY_KEY_SQL = text("""
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
     AND tc.table_name = kcu.table_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = :schema
      AND tc.table_name = :table
    ORDER BY kcu.ordinal_position
""")


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    is_nullable: bool
    is_primary_key: bool = False


class Catalog:
    """Read-only view of one database's ``information_schema``."""

    def __init__(self, conn: Connection):
        self._conn = conn

    def table_exists(self, ref: TableRef) -> bool:
        rows = self._conn.execute(_TABLE_EXISTS_SQL, {"schema": ref.schema, "table": ref.table}).fetchall()
        return len(rows) > 0

    def list_tables(self) -> list[TableRef]:
        rows = self._conn.execute(_LIST_TABLES_SQL).mappings().all()
        return [TableRef(r["table_schema"], r["table_name"]) for r in rows]

    def columns(self, ref: TableRef) -> list[str]:
        """Column names in ordinal order (empty if the table is absent)."""
        rows = self._conn.execute(_COLUMNS_SQL, {"schema": ref.schema, "table": ref.table}).mappings().all()
        return [r["column_name"] for r in rows]

    def column_info(self, ref: TableRef) -> list[ColumnInfo]:
        rows = self._conn.execute(_COLUMNS_SQL, {"schema": ref.schema, "table": ref.table}).mappings().all()
        pk = set(self.primary_key(ref))
        return [
            ColumnInfo(
                name=r["column_name"],
                data_type=r["data_type"],
                is_nullable=r["is_nullable"] == "YES",
                is_primary_key=r["column_name"] in pk,
            )
            for r in rows
        ]

    def primary_key(self, ref: TableRef) -> list[str]:
        rows = self._conn.execute(_PRIMARY_KEY_SQL, {"schema": ref.schema, "table": ref.table}).fetchall()
        return [r[0] for r in rows]
