"""
Streaming CSV export.

Flow for an "export all" request:

  CHECK_COUNT -> ALLOWED | REFUSED
  ALLOWED -> header -> BEGIN; DECLARE cursor -> FETCH batch* -> CLOSE; COMMIT
  any error or client disconnect -> ROLLBACK

The row count is compared against the ceilings before any transaction is
opened or any byte is produced, so a refused export writes nothing.  Once
streaming starts the server-side cursor is read in fixed-size batches and
each batch is yielded immediately; memory use does not grow with the
result.  One export holds one pooled connection for its whole duration.
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from tablegate.core.errors import ExportTooLarge, QueryFailed
from tablegate.core.logging import get_logger
from tablegate.core.utils import serialise_value
from tablegate.governance.access import TIER_ELEVATED, AccessPolicy
from tablegate.query.builder import TableQuery

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 1000

_CSV_SPECIALS = (",", '"', "\n", "\r")


# ── CSV encoding ────────────────────────────────────────


def escape_csv(value: Any) -> str:
    """Render one CSV field; ``None`` becomes an empty field."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        s = json.dumps(value, default=str)
    elif isinstance(value, bool):
        s = "true" if value else "false"
    else:
        s = str(serialise_value(value))
    if any(ch in s for ch in _CSV_SPECIALS):
        return '"' + s.replace('"', '""') + '"'
    return s


def csv_line(values: list[Any]) -> str:
    return ",".join(escape_csv(v) for v in values) + "\n"


# ── Ceilings ────────────────────────────────────────────


@dataclass(frozen=True)
class ExportCheck:
    """Pre-flight answer for the export dialog."""
    total_count: int
    max_rows_for_role: int
    warning_threshold: int
    is_elevated: bool

    @property
    def needs_warning(self) -> bool:
        return self.total_count > self.warning_threshold

    @property
    def exceeds_limit(self) -> bool:
        return self.total_count > self.max_rows_for_role

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalCount": self.total_count,
            "isAdmin": self.is_elevated,
            "maxRowsForRole": self.max_rows_for_role,
            "warningThreshold": self.warning_threshold,
            "canExport": not self.exceeds_limit,
            "needsWarning": self.needs_warning,
            "exceedsLimit": self.exceeds_limit,
        }


def check_export(total_count: int, role_name: str, policy: AccessPolicy) -> ExportCheck:
    return ExportCheck(
        total_count=total_count,
        max_rows_for_role=policy.max_export_rows(role_name),
        warning_threshold=policy.warning_threshold,
        is_elevated=policy.role(role_name).tier == TIER_ELEVATED,
    )


def enforce_absolute_ceiling(total_count: int, ceiling: int) -> None:
    if total_count > ceiling:
        logger.warning("Export refused: %d rows exceeds absolute ceiling %d", total_count, ceiling)
        raise ExportTooLarge(
            f"Export exceeds maximum limit of {ceiling:,} rows. Please narrow your filters.",
            total_count=total_count, limit=ceiling, scope="absolute",
        )


def enforce_role_ceiling(total_count: int, role_name: str, policy: AccessPolicy) -> None:
    """Request-boundary check; the absolute ceiling is checked first."""
    enforce_absolute_ceiling(total_count, policy.absolute_ceiling)
    limit = policy.max_export_rows(role_name)
    if total_count > limit:
        logger.warning("Export refused: %d rows exceeds role=%s limit %d", total_count, role_name, limit)
        raise ExportTooLarge(
            f"Export exceeds your limit of {limit:,} rows. Please contact an administrator for larger exports.",
            total_count=total_count, limit=limit, scope="role",
        )


# ── Streaming ───────────────────────────────────────────


def rows_to_csv(columns: list[str], rows: list[dict[str, Any]]) -> Iterator[str]:
    """Header plus already-fetched rows (single-page export)."""
    yield csv_line(columns)
    for row in rows:
        yield csv_line([row.get(col) for col in columns])


def stream_csv(
    engine: Engine,
    query: TableQuery,
    columns: list[str],
    *,
    total_count: int,
    absolute_ceiling: int,
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_complete: Callable[[int], None] | None = None,
) -> Iterator[str]:
    """Check the ceiling, then return a generator of CSV chunks.

    The ceiling check happens eagerly, here, so ``ExportTooLarge`` is raised
    to the caller before a response is started.  The returned generator
    yields the header line, then one chunk per ``FETCH`` batch.  Closing the
    generator early (client disconnect) rolls the transaction back.
    """
    enforce_absolute_ceiling(total_count, absolute_ceiling)
    return _cursor_batches(engine, query, columns, batch_size, on_complete)


def _cursor_batches(
    engine: Engine,
    query: TableQuery,
    columns: list[str],
    batch_size: int,
    on_complete: Callable[[int], None] | None,
) -> Iterator[str]:
    cursor = f"export_cursor_{uuid.uuid4().hex}"
    written = 0
    committed = False
    conn = engine.connect()
    trans = None
    try:
        yield csv_line(columns)

        trans = conn.begin()
        conn.execute(text("SET TRANSACTION READ ONLY"))
        conn.execute(text(f"DECLARE {cursor} NO SCROLL CURSOR FOR {query.select_sql()}"), query.params)
        while True:
            batch = conn.execute(text(f"FETCH FORWARD {int(batch_size)} FROM {cursor}")).mappings().all()
            if not batch:
                break
            written += len(batch)
            yield "".join(csv_line([row.get(col) for col in columns]) for row in batch)

        conn.execute(text(f"CLOSE {cursor}"))
        trans.commit()
        committed = True
        logger.info("Export streamed %d rows", written)
    except GeneratorExit:
        logger.warning("Export interrupted after %d rows -- rolling back", written)
        raise
    except SQLAlchemyError as exc:
        logger.exception("Export failed after %d rows", written)
        raise QueryFailed("Failed to export CSV") from exc
    finally:
        if trans is not None and not committed:
            try:
                trans.rollback()
            except SQLAlchemyError:
                logger.exception("Error rolling back export transaction")
        conn.close()

    if on_complete is not None:
        on_complete(written)
