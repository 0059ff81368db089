"""Turn materialized rows into detached, serialization-safe dictionaries."""

from __future__ import annotations

import copy
from typing import Any, Iterable, Mapping

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable

from .models import DeflatedRecord

_MUTABLE_TYPES = (dict, list, set, bytearray)


def deflate(row: object) -> DeflatedRecord | None:
    """Copy every column of ``row`` into a new ordered dict.

    Accepts SQLAlchemy mapped instances, SQLAlchemy ``Row`` objects, plain
    mappings and objects exposing ``get_columns()``. ``None`` passes through
    as the absence marker.
    """

    if row is None:
        return None
    return {str(key): _detach(value) for key, value in _column_items(row)}


def deflate_all(rows: Iterable[object]) -> list[DeflatedRecord]:
    """Deflate each row, preserving order."""

    records: list[DeflatedRecord] = []
    for row in rows:
        record = deflate(row)
        if record is not None:
            records.append(record)
    return records


def _column_items(row: object) -> Iterable[tuple[Any, Any]]:
    if isinstance(row, Mapping):
        return tuple(row.items())
    mapping = getattr(row, "_mapping", None)
    if isinstance(mapping, Mapping):
        return tuple(mapping.items())
    get_columns = getattr(row, "get_columns", None)
    if callable(get_columns):
        return tuple(dict(get_columns()).items())
    try:
        state = sa_inspect(row)
    except NoInspectionAvailable as exc:
        raise TypeError(f"Cannot deflate object of type {type(row).__name__!r}") from exc
    mapper = getattr(state, "mapper", None)
    if mapper is None or getattr(state, "object", None) is not row:
        raise TypeError(f"Cannot deflate object of type {type(row).__name__!r}")
    return tuple((attr.key, getattr(row, attr.key)) for attr in mapper.column_attrs)


def _detach(value: Any) -> Any:
    if isinstance(value, _MUTABLE_TYPES):
        return copy.deepcopy(value)
    return value


__all__ = ["deflate", "deflate_all"]
