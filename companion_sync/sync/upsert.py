from __future__ import annotations

from datetime import datetime
from typing import Any, List, Sequence, Tuple

from .rows import Row, quote_ident, to_utc
from .tables import SyncTableConfig


def prepare_value(config: SyncTableConfig, column: str, value: Any) -> Any:
    if column in config.deferred_fk_columns:
        return None
    if column in config.timestamp_columns and isinstance(value, datetime):
        return to_utc(value)
    return value


def build_upsert_query(config: SyncTableConfig, row: Row) -> Tuple[str, List[Any]]:
    """Build a parameterized insert-or-update for one row.

    Deferred FK columns are written as NULL on insert and left out of the
    UPDATE list, so a value restored by an earlier second pass survives.
    """
    columns = list(row.keys())
    missing = [col for col in config.primary_key if col not in row]
    if missing:
        raise ValueError(f"Row for {config.table_name!r} is missing primary key columns {missing}")

    values = [prepare_value(config, col, row[col]) for col in columns]
    placeholders = ", ".join(f"${index}{config.cast_for(col)}" for index, col in enumerate(columns, start=1))
    column_list = ", ".join(quote_ident(col) for col in columns)
    conflict_list = ", ".join(quote_ident(col) for col in config.primary_key)

    update_columns = [
        col for col in columns if col not in config.deferred_fk_columns and col not in config.primary_key
    ]
    if update_columns:
        update_set = ", ".join(f"{quote_ident(col)} = EXCLUDED.{quote_ident(col)}" for col in update_columns)
        conflict_action = f"DO UPDATE SET {update_set}"
    else:
        conflict_action = "DO NOTHING"

    query = (
        f"INSERT INTO {quote_ident(config.table_name)} ({column_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_list}) {conflict_action}"
    )
    return query, values


def build_column_update_query(
    config: SyncTableConfig,
    column: str,
    value: Any,
    key_values: Sequence[Any],
) -> Tuple[str, List[Any]]:
    if len(key_values) != len(config.primary_key):
        raise ValueError(
            f"{config.table_name}: expected {len(config.primary_key)} key values, got {len(key_values)}"
        )
    if column in config.timestamp_columns and isinstance(value, datetime):
        value = to_utc(value)
    where_clause = " AND ".join(
        f"{quote_ident(col)} = ${index}{config.cast_for(col)}"
        for index, col in enumerate(config.primary_key, start=2)
    )
    query = (
        f"UPDATE {quote_ident(config.table_name)} "
        f"SET {quote_ident(column)} = $1{config.cast_for(column)} "
        f"WHERE {where_clause}"
    )
    return query, [value, *key_values]


async def upsert_row(store: Any, config: SyncTableConfig, row: Row) -> None:
    query, values = build_upsert_query(config, row)
    await store.execute(query, *values)


async def update_column(
    store: Any,
    config: SyncTableConfig,
    column: str,
    value: Any,
    key_values: Sequence[Any],
) -> None:
    query, values = build_column_update_query(config, column, value, key_values)
    await store.execute(query, *values)


def key_values_for(config: SyncTableConfig, row: Row) -> List[Any]:
    return [row.get(col) for col in config.primary_key]
