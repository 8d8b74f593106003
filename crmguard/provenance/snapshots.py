from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import TypeAdapter
from sqlalchemy import inspect


_SNAPSHOT_ADAPTER = TypeAdapter(dict[str, Any])


def row_values(instance: Any) -> dict[str, Any]:
    """Column values of a mapped instance keyed by attribute name."""

    mapper = inspect(instance).mapper
    return {attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs}


def to_snapshot(values: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if values is None:
        return None
    return _SNAPSHOT_ADAPTER.dump_python(dict(values), mode="json")
