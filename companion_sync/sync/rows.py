from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal

from .tables import SyncTableConfig


logger = logging.getLogger("companion_sync")

Row = Dict[str, Any]
RowMap = Dict[str, Row]
Comparison = Literal["dev-newer", "prod-newer", "same"]

KEY_SEPARATOR = "|"


def quote_ident(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def to_utc(value: datetime) -> datetime:
    # asyncpg hands back naive datetimes for timestamp-without-time-zone columns;
    # those hold UTC instants.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def fetch_table_columns(store: Any, table_name: str, schema: str = "public") -> List[str]:
    rows = await store.fetch(
        "SELECT column_name FROM information_schema.columns "
        "WHERE table_schema = $1 AND table_name = $2 "
        "ORDER BY ordinal_position",
        schema,
        table_name,
    )
    return [str(row["column_name"]) for row in rows]


async def fetch_all_rows(store: Any, config: SyncTableConfig, schema: str = "public") -> List[Row]:
    table = quote_ident(config.table_name)
    if not config.vector_columns:
        return await store.fetch(f"SELECT * FROM {table}")

    # The vector binary format has no client-side codec, so those columns come back as text.
    columns = await fetch_table_columns(store, config.table_name, schema)
    if not columns:
        raise RuntimeError(f"Table {config.table_name!r} has no columns in the {store.name} database")
    select_list = ", ".join(
        f"{quote_ident(col)}::text AS {quote_ident(col)}" if col in config.vector_columns else quote_ident(col)
        for col in columns
    )
    return await store.fetch(f"SELECT {select_list} FROM {table}")


def get_primary_key(row: Row, primary_key: Iterable[str]) -> str:
    return KEY_SEPARATOR.join(str(row.get(col)) for col in primary_key)


def build_row_map(rows: Iterable[Row], primary_key: Iterable[str]) -> RowMap:
    pk = tuple(primary_key)
    return {get_primary_key(row, pk): row for row in rows}


def compare_timestamps(dev_row: Row, prod_row: Row, config: SyncTableConfig) -> Comparison:
    field = config.recency_field
    if field is None:
        return "same"

    dev_time = dev_row.get(field)
    prod_time = prod_row.get(field)
    if not isinstance(dev_time, datetime) or not isinstance(prod_time, datetime):
        raise InvalidTimestampError(field, dev_time, prod_time)

    dev_ts = to_utc(dev_time)
    prod_ts = to_utc(prod_time)
    if dev_ts > prod_ts:
        return "dev-newer"
    if prod_ts > dev_ts:
        return "prod-newer"
    return "same"


def safe_compare_timestamps(
    dev_row: Row,
    prod_row: Row,
    config: SyncTableConfig,
) -> tuple[Comparison, bool]:
    """Compare recency, downgrading malformed timestamps to a tie.

    Returns the comparison and whether the timestamps were usable.
    """
    try:
        return compare_timestamps(dev_row, prod_row, config), True
    except InvalidTimestampError as exc:
        logger.warning(
            "[Sync] %s: non-date %s timestamps (dev=%r, prod=%r); treating rows as unchanged",
            config.table_name,
            exc.field,
            exc.dev_value,
            exc.prod_value,
        )
        return "same", False


class InvalidTimestampError(ValueError):
    def __init__(self, field: str, dev_value: Any, prod_value: Any) -> None:
        super().__init__(f"Non-date {field} timestamps: dev={dev_value!r}, prod={prod_value!r}")
        self.field = field
        self.dev_value = dev_value
        self.prod_value = prod_value
