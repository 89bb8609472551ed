"""Last-wins merge of previously retrieved rows with freshly fetched ones."""

from collections.abc import Iterable, Sequence

from statcache.store.models import Row


VALUE_COLUMNS = ("OBS_VALUE", "ObsValue")


def columns_of(rows: Iterable[Row]) -> list[str]:
    """Union of column names in order of first appearance."""
    seen: dict[str, None] = {}
    for row in rows:
        for column in row:
            seen.setdefault(column, None)
    return list(seen)


def default_key_columns(
    rows: Iterable[Row], value_columns: Sequence[str] = VALUE_COLUMNS
) -> list[str]:
    """Every column except the measurement columns."""
    return [c for c in columns_of(rows) if c not in value_columns]


def merge(
    existing: Sequence[Row],
    new: Sequence[Row],
    key_columns: Sequence[str] | None = None,
    value_columns: Sequence[str] = VALUE_COLUMNS,
) -> list[Row]:
    """Combine two row sets, deduplicating on a key tuple.

    When an existing and a new row share a key, the new row wins; this is
    how upstream revisions replace stale observations. Output order is the
    order in which each key first appears, existing rows first.

    Args:
        existing: Previously retrieved rows.
        new: Freshly fetched rows.
        key_columns: Identifying columns. Defaults to all columns except
            value_columns.
        value_columns: Measurement columns excluded from the default key.

    Returns:
        Merged rows. A column missing from a row counts as None in its key.
    """
    combined = [*existing, *new]
    keys = list(key_columns) if key_columns is not None else default_key_columns(
        combined, value_columns
    )

    merged: dict[tuple[object, ...], Row] = {}
    for row in combined:
        merged[tuple(row.get(column) for column in keys)] = row
    return list(merged.values())
