"""
JSON-document stores for small pieces of application state.

Each store owns one file under ``settings.data_dir`` and keeps the parsed
document in memory.  Reads come from memory; every mutation rewrites the
whole file atomically (temp file + ``os.replace``) while holding the
store's lock.

  filters.json         table -> [FilterDefinition]
  table_settings.json  "database:schema.table" -> TableSettings
  filter_history.json  [FilterHistoryEntry]
  report_blocks.json   [ReportBlock]
"""
from __future__ import annotations

import datetime
import json
import os
import tempfile
import threading
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from tablegate.core.config import get_settings
from tablegate.core.errors import InvalidValue
from tablegate.core.logging import get_logger
from tablegate.query.filters import FilterSpec

logger = get_logger(__name__)

MAX_HISTORY_PER_TABLE = 5

BLOCK_KINDS = ("table", "chart", "metric", "text")


# ── Documents ───────────────────────────────────────────


class FilterDefinition(BaseModel):
    """A reusable filter an admin offers for one table."""
    id: str
    name: str
    column: str
    operator: str


class TableSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_visible: bool = Field(True, alias="isVisible")
    display_name: Optional[str] = Field(None, alias="displayName")
    hidden_columns: list[str] = Field(default_factory=list, alias="hiddenColumns")


class FilterHistoryEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(..., alias="userId")
    database: str
    table: str
    filters: list[FilterSpec]
    last_used_at: str = Field(..., alias="lastUsedAt")


class ReportBlock(BaseModel):
    """A saved report component; ``config`` shape depends on ``kind``."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    owner_id: str = Field(..., alias="ownerId")
    kind: str
    title: Optional[str] = None
    config: dict[str, Any] = Field(default_factory=dict)


# ── File helpers ────────────────────────────────────────


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.exception("Could not read %s -- starting empty", path)
        return default


def _write_json(path: Path, data: Any) -> None:
    """Write *data* atomically next to *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


class _JsonStore:
    filename = ""

    def __init__(self, data_dir: str | Path):
        self._path = Path(data_dir) / self.filename
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path


# ── Filter definitions ──────────────────────────────────


class FilterDefinitionStore(_JsonStore):
    filename = "filters.json"

    def __init__(self, data_dir: str | Path):
        super().__init__(data_dir)
        raw = _read_json(self._path, {})
        self._data: dict[str, list[FilterDefinition]] = {
            table: [FilterDefinition.model_validate(d) for d in defs] for table, defs in raw.items()
        }

    def get(self, table: str) -> list[FilterDefinition]:
        with self._lock:
            return list(self._data.get(table, []))

    def set(self, table: str, definitions: list[FilterDefinition]) -> None:
        with self._lock:
            self._data[table] = list(definitions)
            _write_json(self._path, {t: [d.model_dump() for d in defs] for t, defs in self._data.items()})
        logger.info("Saved %d filter definitions for table=%s", len(definitions), table)

    def all(self) -> dict[str, list[FilterDefinition]]:
        with self._lock:
            return {t: list(defs) for t, defs in self._data.items()}


# ── Table settings ──────────────────────────────────────


def settings_key(database: str, table: str) -> str:
    return f"{database}:{table}"


class TableSettingsStore(_JsonStore):
    filename = "table_settings.json"

    def __init__(self, data_dir: str | Path):
        super().__init__(data_dir)
        raw = _read_json(self._path, {})
        self._data: dict[str, TableSettings] = {k: TableSettings.model_validate(v) for k, v in raw.items()}

    def get(self, database: str, table: str) -> TableSettings | None:
        with self._lock:
            return self._data.get(settings_key(database, table))

    def set(self, database: str, table: str, settings: TableSettings) -> None:
        with self._lock:
            self._data[settings_key(database, table)] = settings
            _write_json(self._path, {k: v.model_dump(by_alias=True) for k, v in self._data.items()})
        logger.info("Table settings updated db=%s table=%s visible=%s", database, table, settings.is_visible)

    def all(self) -> dict[str, TableSettings]:
        with self._lock:
            return dict(self._data)

    def is_visible(self, database: str, table: str) -> bool:
        """Tables without settings are visible."""
        entry = self.get(database, table)
        return entry is None or entry.is_visible


# ── Filter history ──────────────────────────────────────


def _filter_identity(f: FilterSpec) -> str:
    return json.dumps([f.column, f.operator, f.value], sort_keys=True, default=str)


def filters_equal(a: list[FilterSpec], b: list[FilterSpec]) -> bool:
    """Set equality of filter triples; order does not matter."""
    if len(a) != len(b):
        return False
    return sorted(_filter_identity(f) for f in a) == sorted(_filter_identity(f) for f in b)


class FilterHistoryStore(_JsonStore):
    filename = "filter_history.json"

    def __init__(self, data_dir: str | Path, max_per_table: int = MAX_HISTORY_PER_TABLE):
        super().__init__(data_dir)
        self._max = max_per_table
        self._entries: list[FilterHistoryEntry] = [
            FilterHistoryEntry.model_validate(e) for e in _read_json(self._path, [])
        ]

    def _persist(self) -> None:
        _write_json(self._path, [e.model_dump(by_alias=True) for e in self._entries])

    def _scoped(self, user_id: str, database: str, table: str) -> list[FilterHistoryEntry]:
        matches = [
            (i, e) for i, e in enumerate(self._entries)
            if e.user_id == user_id and e.database == database and e.table == table
        ]
        # later position breaks timestamp ties
        matches.sort(key=lambda p: (p[1].last_used_at, p[0]), reverse=True)
        return [e for _, e in matches]

    def recent(self, user_id: str, database: str, table: str) -> list[FilterHistoryEntry]:
        """Most recently used first, at most ``max_per_table`` entries."""
        with self._lock:
            return self._scoped(user_id, database, table)[: self._max]

    def save(self, user_id: str, database: str, table: str, filters: list[FilterSpec]) -> FilterHistoryEntry:
        """Record *filters*; an equal set already stored just gets bumped."""
        if not filters:
            raise InvalidValue("Cannot save empty filter history")

        with self._lock:
            now = _now_iso()
            for entry in self._scoped(user_id, database, table):
                if filters_equal(entry.filters, filters):
                    entry.last_used_at = now
                    self._persist()
                    return entry

            entry = FilterHistoryEntry(
                id=_new_id(), user_id=user_id, database=database, table=table,
                filters=list(filters), last_used_at=now,
            )
            self._entries.append(entry)

            overflow = {e.id for e in self._scoped(user_id, database, table)[self._max:]}
            if overflow:
                self._entries = [e for e in self._entries if e.id not in overflow]
            self._persist()
            return entry

    def delete(self, entry_id: str, user_id: str) -> bool:
        """Delete an entry owned by *user_id*; ``False`` if none matched."""
        with self._lock:
            for i, e in enumerate(self._entries):
                if e.id == entry_id and e.user_id == user_id:
                    del self._entries[i]
                    self._persist()
                    return True
            return False


# ── Report blocks ───────────────────────────────────────


class ReportBlockStore(_JsonStore):
    filename = "report_blocks.json"

    def __init__(self, data_dir: str | Path):
        super().__init__(data_dir)
        self._blocks: dict[str, ReportBlock] = {}
        for raw in _read_json(self._path, []):
            block = ReportBlock.model_validate(raw)
            self._blocks[block.id] = block

    def _persist(self) -> None:
        _write_json(self._path, [b.model_dump(by_alias=True) for b in self._blocks.values()])

    def create(self, owner_id: str, kind: str, config: dict[str, Any], title: str | None = None) -> ReportBlock:
        if kind not in BLOCK_KINDS:
            raise InvalidValue(f"Unknown block kind '{kind}'. Allowed: {', '.join(BLOCK_KINDS)}")
        block = ReportBlock(id=_new_id(), owner_id=owner_id, kind=kind, title=title, config=config)
        with self._lock:
            self._blocks[block.id] = block
            self._persist()
        return block

    def get(self, block_id: str) -> ReportBlock | None:
        with self._lock:
            return self._blocks.get(block_id)

    def list_for(self, owner_id: str) -> list[ReportBlock]:
        with self._lock:
            return [b for b in self._blocks.values() if b.owner_id == owner_id]

    def delete(self, block_id: str, owner_id: str) -> bool:
        with self._lock:
            block = self._blocks.get(block_id)
            if block is None or block.owner_id != owner_id:
                return False
            del self._blocks[block_id]
            self._persist()
            return True


# ── Singletons ──────────────────────────────────────────


@lru_cache
def get_filter_definitions() -> FilterDefinitionStore:
    return FilterDefinitionStore(get_settings().data_dir)


@lru_cache
def get_table_settings() -> TableSettingsStore:
    return TableSettingsStore(get_settings().data_dir)


@lru_cache
def get_filter_history() -> FilterHistoryStore:
    return FilterHistoryStore(get_settings().data_dir)


@lru_cache
def get_report_blocks() -> ReportBlockStore:
    return ReportBlockStore(get_settings().data_dir)
