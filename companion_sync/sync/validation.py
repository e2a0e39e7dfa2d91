from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Set, Tuple

from .rows import quote_ident
from .tables import SyncTableConfig


logger = logging.getLogger("companion_sync")


class SchemaVersionMismatchError(RuntimeError):
    def __init__(self, dev_version: str | None, prod_version: str | None) -> None:
        super().__init__(
            "Schema version mismatch between dev and prod databases "
            f"(dev={dev_version or '<none>'}, prod={prod_version or '<none>'}). "
            "Apply pending migrations to both databases before syncing."
        )
        self.dev_version = dev_version
        self.prod_version = prod_version


async def get_schema_version(store: Any, migrations_table: str = "_prisma_migrations") -> str | None:
    rows = await store.fetch(
        f"SELECT migration_name FROM {quote_ident(migrations_table)} "
        "WHERE finished_at IS NOT NULL AND rolled_back_at IS NULL "
        "ORDER BY finished_at DESC, migration_name DESC LIMIT 1"
    )
    if not rows:
        return None
    return str(rows[0]["migration_name"])


async def check_schema_versions(
    dev: Any,
    prod: Any,
    migrations_table: str = "_prisma_migrations",
) -> str:
    dev_version = await get_schema_version(dev, migrations_table)
    prod_version = await get_schema_version(prod, migrations_table)
    if dev_version is None or prod_version is None or dev_version != prod_version:
        raise SchemaVersionMismatchError(dev_version, prod_version)
    return dev_version


async def _live_uuid_columns(store: Any, schema: str) -> Dict[str, Set[str]]:
    rows = await store.fetch(
        "SELECT table_name, column_name FROM information_schema.columns "
        "WHERE table_schema = $1 AND data_type = 'uuid'",
        schema,
    )
    result: Dict[str, Set[str]] = {}
    for row in rows:
        result.setdefault(str(row["table_name"]), set()).add(str(row["column_name"]))
    return result


async def _live_primary_keys(store: Any, schema: str) -> Dict[str, Tuple[str, ...]]:
    rows = await store.fetch(
        """
        SELECT tc.table_name, kcu.column_name
        FROM information_schema.table_constraints AS tc
        JOIN information_schema.key_column_usage AS kcu
          ON tc.constraint_name = kcu.constraint_name
         AND tc.table_schema = kcu.table_schema
        WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_schema = $1
        ORDER BY tc.table_name, kcu.ordinal_position
        """,
        schema,
    )
    result: Dict[str, List[str]] = {}
    for row in rows:
        result.setdefault(str(row["table_name"]), []).append(str(row["column_name"]))
    return {table: tuple(cols) for table, cols in result.items()}


async def validate_sync_config(
    store: Any,
    tables: Iterable[SyncTableConfig],
    schema: str = "public",
) -> List[str]:
    """Cross-check the registry against live schema metadata.

    Drift is reported as warnings; it never blocks a sync.
    """
    uuid_columns = await _live_uuid_columns(store, schema)
    primary_keys = await _live_primary_keys(store, schema)
    warnings: List[str] = []

    for config in tables:
        name = config.table_name
        live_pk = primary_keys.get(name)
        if live_pk is None:
            warnings.append(f"{name}: table has no primary key in the live schema (or does not exist)")
            continue
        if set(live_pk) != set(config.primary_key):
            warnings.append(
                f"{name}: configured primary key {list(config.primary_key)} "
                f"does not match live primary key {list(live_pk)}"
            )

        live_uuid = uuid_columns.get(name, set())
        for column in sorted(config.uuid_columns - live_uuid):
            warnings.append(f"{name}.{column}: declared as a UUID column but is not uuid in the live schema")
        for column in sorted(live_uuid - config.uuid_columns):
            warnings.append(f"{name}.{column}: uuid column missing from uuid_columns; values will not be cast")

    for warning in warnings:
        logger.warning("[Sync] Config drift: %s", warning)
    return warnings
