"""
Audit log -- one row per data access or export.

The table is created automatically on first use via `ensure_table()`.
A failed write never fails the request: it is logged and dropped.
"""
from __future__ import annotations

from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.engine import Engine

from tablegate.db.connection import get_app_engine
from tablegate.core.logging import get_logger

logger = get_logger(__name__)

_TABLE = "audit_logs"

_CREATE_SQL = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    id              VARCHAR PRIMARY KEY DEFAULT gen_random_uuid()::text,
    user_id         VARCHAR NOT NULL,
    user_email      VARCHAR NOT NULL,
    action          VARCHAR NOT NULL,
    database        VARCHAR,
    table_name      VARCHAR,
    details         TEXT,
    ip_address      VARCHAR,
    timestamp       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_audit_logs_user ON {_TABLE} (user_id);
CREATE INDEX IF NOT EXISTS idx_audit_logs_timestamp ON {_TABLE} (timestamp);
"""

_INSERT_SQL = text(f"""
    INSERT INTO {_TABLE}
        (user_id, user_email, action, database, table_name, details, ip_address)
    VALUES
        (:user_id, :user_email, :action, :database, :table_name, :details, :ip_address)
""")

VIEW_DATA = "VIEW_DATA"
EXPORT_PAGE = "EXPORT_PAGE"
EXPORT_ALL = "EXPORT_ALL"
REPORT_QUERY = "REPORT_QUERY"


class AuditLog:
    """Writes audit entries to the application database."""

    def __init__(self, engine: Engine | None = None):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_app_engine()
        return self._engine

    def ensure_table(self) -> None:
        """Create the audit table if it doesn't exist."""
        with self.engine.connect() as conn:
            conn.execute(text(_CREATE_SQL))
            conn.commit()
        logger.info("Audit table '%s' ensured", _TABLE)

    def log(
        self,
        user_id: str,
        user_email: str,
        action: str,
        database: str | None = None,
        table: str | None = None,
        details: str | None = None,
        ip: str | None = None,
    ) -> None:
        """Insert one audit row; failures are logged, never raised."""
        params = {
            "user_id": str(user_id),
            "user_email": user_email or "unknown",
            "action": action,
            "database": database,
            "table_name": table,
            "details": details,
            "ip_address": ip,
        }
        try:
            with self.engine.connect() as conn:
                conn.execute(_INSERT_SQL, params)
                conn.commit()
        except Exception:
            logger.exception("Failed to write audit log -- continuing")
            return
        logger.info(
            "[AUDIT] user=%s action=%s db=%s table=%s | %s",
            user_email, action, database or "-", table or "-", details or "",
        )


@lru_cache
def get_audit_log() -> AuditLog:
    return AuditLog()
