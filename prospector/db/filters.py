"""Parameterized filter/sort helpers.

Callers pass an explicit allow-list mapping public criteria names to columns,
so request parameters can never name arbitrary attributes or SQL fragments.
"""

from collections.abc import Mapping
from typing import Any

from sqlalchemy import Select
from sqlalchemy.sql.elements import ColumnElement


def apply_filters(query: Select, allowed: Mapping[str, ColumnElement], criteria: Mapping[str, Any]) -> Select:
    for key, value in criteria.items():
        if value is None or value == "":
            continue
        column = allowed.get(key)
        if column is None:
            raise ValueError(f"Unsupported filter: {key}")
        if isinstance(value, (list, tuple, set, frozenset)):
            query = query.where(column.in_(list(value)))
        else:
            query = query.where(column == value)
    return query


def apply_sort(
    query: Select,
    allowed: Mapping[str, ColumnElement],
    sort_by: str | None,
    sort_dir: str = "desc",
    default: str | None = None,
) -> Select:
    key = sort_by or default
    if key is None:
        return query
    column = allowed.get(key)
    if column is None:
        raise ValueError(f"Unsupported sort column: {key}")
    if sort_dir not in ("asc", "desc"):
        raise ValueError(f"Unsupported sort direction: {sort_dir}")
    return query.order_by(column.desc() if sort_dir == "desc" else column.asc())
