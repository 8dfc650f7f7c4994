"""
Identifier validation -- the only place where names become SQL text.

Checks performed:
  1. Syntax: ``^[A-Za-z_][A-Za-z0-9_]*$`` and at most 128 characters.
     This runs first and needs no I/O, so metacharacters (``;``, ``--``,
     quotes, whitespace) never reach the catalog or the database.
  2. Existence: table and column names are looked up in the live catalog
     on every request.  Nothing is cached, so a dropped column cannot be
     referenced through a stale schema.

Every other module builds SQL through ``quote_ident`` / ``TableRef.sql``;
values always travel as bound parameters.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from tablegate.core.errors import InvalidIdentifier, InvalidColumn
from tablegate.core.logging import get_logger
from tablegate.governance.suggestions import similar_columns, format_suggestions

logger = get_logger(__name__)

IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
MAX_IDENTIFIER_LENGTH = 128
DEFAULT_SCHEMA = "public"


def is_valid_identifier(name: object) -> bool:
    return (
        isinstance(name, str)
        and len(name) <= MAX_IDENTIFIER_LENGTH
        and IDENTIFIER_RE.fullmatch(name) is not None
    )


def validate_identifier(name: object, kind: str = "column") -> str:
    """Return *name* unchanged if it is a safe identifier, else raise."""
    if not is_valid_identifier(name):
        logger.warning("Rejected %s identifier: %r", kind, name)
        raise InvalidIdentifier(f"Invalid {kind} identifier: {name}")
    return name  # type: ignore[return-value]


def quote_ident(name: str, kind: str = "column") -> str:
    """Double-quote a validated identifier for use in SQL text."""
    return f'"{validate_identifier(name, kind)}"'


@dataclass(frozen=True)
class TableRef:
    """A schema-qualified table name whose parts passed syntax validation."""

    schema: str
    table: str

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.table}"

    @property
    def sql(self) -> str:
        return f"{quote_ident(self.schema, 'schema')}.{quote_ident(self.table, 'table')}"

    def __str__(self) -> str:
        return self.full_name


def parse_table_name(name: object) -> TableRef:
    """Parse ``"table"`` or ``"schema.table"`` into a ``TableRef``.

    Unqualified names resolve to the ``public`` schema.
    """
    if not isinstance(name, str) or not name:
        raise InvalidIdentifier(f"Invalid table identifier: {name}")
    parts = name.split(".")
    if len(parts) == 1:
        return TableRef(DEFAULT_SCHEMA, validate_identifier(parts[0], "table"))
    if len(parts) == 2:
        schema, table = parts
        return TableRef(validate_identifier(schema, "schema"), validate_identifier(table, "table"))
    logger.warning("Rejected table identifier: %r", name)
    raise InvalidIdentifier(f"Invalid table identifier: {name}")


def validate_column(name: object, known_columns: Iterable[str], table: str = "table") -> str:
    """Syntax-check *name* then require it in *known_columns*.

    Raises ``InvalidColumn`` with similarity-ranked suggestions when the
    name is well formed but absent.
    """
    col = validate_identifier(name, "column")
    known = list(known_columns)
    if col not in known:
        suggestions = similar_columns(col, known)
        raise InvalidColumn(
            f"Column not found in {table}: {col}.{format_suggestions(suggestions)}",
            suggestions=suggestions,
            column=col,
        )
    return col
