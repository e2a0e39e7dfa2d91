from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, Iterable

from .rows import RowMap, quote_ident
from .tables import SyncTableConfig


logger = logging.getLogger("companion_sync")


async def load_tombstone_ids(store: Any, tombstone_table: str) -> set[str]:
    rows = await store.fetch(f"SELECT id FROM {quote_ident(tombstone_table)}")
    return {str(row["id"]) for row in rows}


async def load_tombstones(
    dev: Any,
    prod: Any,
    tables: Iterable[SyncTableConfig],
) -> Dict[str, FrozenSet[str]]:
    """Union of hard-deleted ids from both stores, keyed by tombstone table."""
    tombstones: Dict[str, FrozenSet[str]] = {}
    for config in tables:
        name = config.tombstone_table
        if name is None or name in tombstones:
            continue
        dev_ids = await load_tombstone_ids(dev, name)
        prod_ids = await load_tombstone_ids(prod, name)
        tombstones[name] = frozenset(dev_ids | prod_ids)
        logger.info(
            "[Sync] Loaded %s tombstones from %s (dev=%s, prod=%s)",
            len(tombstones[name]),
            name,
            len(dev_ids),
            len(prod_ids),
        )
    return tombstones


def tombstoned_keys(row_map: RowMap, tombstone_ids: FrozenSet[str]) -> list[str]:
    return [key for key in row_map if key in tombstone_ids]


async def delete_tombstoned_rows(
    store: Any,
    config: SyncTableConfig,
    row_map: RowMap,
    tombstone_ids: FrozenSet[str],
) -> int:
    """Remove locally present rows whose id is tombstoned in either store."""
    doomed = tombstoned_keys(row_map, tombstone_ids)
    if not doomed:
        return 0
    pk_column = config.primary_key[0]
    cast = "::uuid[]" if pk_column in config.uuid_columns else "::text[]"
    await store.execute(
        f"DELETE FROM {quote_ident(config.table_name)} WHERE {quote_ident(pk_column)} = ANY($1{cast})",
        doomed,
    )
    for key in doomed:
        row_map.pop(key, None)
    logger.info(
        "[Sync] Deleted %s tombstoned rows from %s in %s database",
        len(doomed),
        config.table_name,
        store.name,
    )
    return len(doomed)
