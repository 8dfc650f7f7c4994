"""
Small shared utilities.
"""
from __future__ import annotations

import datetime
import decimal
import time
import uuid
from contextlib import contextmanager
from typing import Any, Generator


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime, datetime.time)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    if isinstance(val, uuid.UUID):
        return str(val)
    if isinstance(val, (bytes, memoryview)):
        return bytes(val).hex()
    return val


def serialise_row(row: dict[str, Any]) -> dict[str, Any]:
    return {col: serialise_value(val) for col, val in row.items()}
