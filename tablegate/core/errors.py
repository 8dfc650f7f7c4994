"""
Error taxonomy for the query pipeline.

Validation errors (identifier, operator, value, join) are raised before any
SQL runs.  ``AccessDenied`` always carries the same message so callers cannot
tell an ungranted table from a missing one.
"""
from __future__ import annotations

from typing import Any


class TableGateError(Exception):
    """Base class for every error surfaced to API callers."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "kind": self.kind}
        body.update(self.extra)
        return body


class InvalidIdentifier(TableGateError):
    """Name fails the identifier syntax check."""

    kind = "invalid_identifier"


class NotFound(TableGateError):
    """Syntactically valid name that is absent from the live catalog."""

    kind = "not_found"

    def __init__(self, message: str, suggestions: list[str] | None = None, **extra: Any):
        super().__init__(message, suggestions=list(suggestions or []), **extra)

    @property
    def suggestions(self) -> list[str]:
        return self.extra["suggestions"]


class InvalidColumn(NotFound):
    kind = "invalid_column"


class AccessDenied(TableGateError):
    kind = "access_denied"
    status_code = 403

    def __init__(self) -> None:
        super().__init__("Access denied")


class InvalidOperator(TableGateError):
    kind = "invalid_operator"


class InvalidValue(TableGateError):
    kind = "invalid_value"


class InvalidJoin(TableGateError):
    kind = "invalid_join"


class ExportTooLarge(TableGateError):
    """Row count exceeds a ceiling; raised before any row is streamed."""

    kind = "export_too_large"
    status_code = 403

    def __init__(self, message: str, total_count: int, limit: int, scope: str):
        super().__init__(message, total_count=total_count, limit=limit, scope=scope)


class QueryFailed(TableGateError):
    kind = "query_failed"
    status_code = 500


class StreamInterrupted(TableGateError):
    kind = "stream_interrupted"
    status_code = 499


class BlockNotFound(TableGateError):
    """Report block absent or owned by someone else -- the two look identical."""

    kind = "block_not_found"
    status_code = 404

    def __init__(self) -> None:
        super().__init__("Block not found")
