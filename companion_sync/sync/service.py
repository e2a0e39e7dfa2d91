from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Sequence

from .foreign_keys import update_deferred_fk_columns
from .rows import Row, RowMap, build_row_map, fetch_all_rows, safe_compare_timestamps
from .singletons import reconcile_singleton_flags
from .tables import SYNC_TABLES, SyncTableConfig
from .tombstones import delete_tombstoned_rows, load_tombstones, tombstoned_keys
from .upsert import upsert_row
from .validation import check_schema_versions, validate_sync_config


logger = logging.getLogger("companion_sync")


@dataclass(slots=True)
class TableSyncStats:
    dev_to_prod: int = 0
    prod_to_dev: int = 0
    conflicts: int = 0


@dataclass(slots=True)
class SyncResult:
    schema_version: str
    stats: Dict[str, TableSyncStats] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    dry_run: bool = True


@dataclass(slots=True)
class _TableOutcome:
    stats: TableSyncStats
    invalid_timestamps: int = 0
    # key -> side whose row was written to the other store
    sources: Dict[str, str] = field(default_factory=dict)


class DatabaseSyncService:
    """Bidirectional last-write-wins sync between a dev and a prod database.

    Pass 1 syncs every registered table in FK order with deferred FK columns
    written as NULL. Pass 2 restores those columns once every referenced row
    exists on both sides. Singleton flags are reconciled before a flagged
    table is copied and once more at the end.
    """

    def __init__(
        self,
        dev: Any,
        prod: Any,
        *,
        tables: Sequence[SyncTableConfig] = SYNC_TABLES,
        migrations_table: str = "_prisma_migrations",
        schema: str = "public",
    ) -> None:
        self.dev = dev
        self.prod = prod
        self.tables = tuple(tables)
        self.migrations_table = migrations_table
        self.schema = schema

    async def sync(self, *, dry_run: bool) -> SyncResult:
        logger.info("[Sync] Starting database sync (dry_run=%s)", dry_run)
        try:
            await self.dev.connect()
            await self.prod.connect()

            schema_version = await check_schema_versions(self.dev, self.prod, self.migrations_table)
            logger.info("[Sync] Schema versions verified: %s", schema_version)

            result = SyncResult(schema_version=schema_version, dry_run=dry_run)
            result.warnings.extend(await validate_sync_config(self.dev, self.tables, self.schema))

            tombstones = await load_tombstones(self.dev, self.prod, self.tables)
            pass_one_sources: Dict[str, Dict[str, str]] = {}

            logger.info("[Sync] Pass 1: syncing %s tables", len(self.tables))
            for config in self.tables:
                if config.singleton_flags and not dry_run:
                    # Partial unique indexes allow one holder per flag, so
                    # losers are cleared before pass 1 copies any holder across.
                    await self._resolve_singletons([config])
                tombstone_ids = tombstones.get(config.tombstone_table or "", frozenset())
                outcome = await self._sync_table(config, tombstone_ids, dry_run, result.warnings)
                result.stats[config.table_name] = outcome.stats
                if outcome.stats.conflicts > 0:
                    result.warnings.append(
                        f"{config.table_name}: {outcome.stats.conflicts} conflicts resolved using last-write-wins"
                    )
                if outcome.invalid_timestamps > 0:
                    result.warnings.append(
                        f"{config.table_name}: {outcome.invalid_timestamps} rows with missing or invalid "
                        f"{config.recency_field} treated as unchanged"
                    )
                if config.deferred_fk_columns:
                    pass_one_sources[config.table_name] = outcome.sources

            if not dry_run:
                await self._run_second_pass(pass_one_sources, result.warnings)
                await self._resolve_singletons([c for c in self.tables if c.singleton_flags])

            logger.info(
                "[Sync] Sync complete: %s",
                {table: (s.dev_to_prod, s.prod_to_dev, s.conflicts) for table, s in result.stats.items()},
            )
            return result
        finally:
            try:
                await self.dev.close()
            finally:
                await self.prod.close()

    async def _sync_table(
        self,
        config: SyncTableConfig,
        tombstone_ids: FrozenSet[str],
        dry_run: bool,
        warnings: List[str],
    ) -> _TableOutcome:
        logger.info("[Sync] Syncing table %s", config.table_name)
        dev_map = build_row_map(await fetch_all_rows(self.dev, config, self.schema), config.primary_key)
        prod_map = build_row_map(await fetch_all_rows(self.prod, config, self.schema), config.primary_key)

        if tombstone_ids:
            if dry_run:
                pending = len(tombstoned_keys(dev_map, tombstone_ids)) + len(tombstoned_keys(prod_map, tombstone_ids))
                if pending:
                    warnings.append(f"{config.table_name}: {pending} tombstoned rows would be deleted")
            else:
                await delete_tombstoned_rows(self.dev, config, dev_map, tombstone_ids)
                await delete_tombstoned_rows(self.prod, config, prod_map, tombstone_ids)

        return await self._merge(config, dev_map, prod_map, tombstone_ids, dry_run)

    async def _merge(
        self,
        config: SyncTableConfig,
        dev_map: RowMap,
        prod_map: RowMap,
        tombstone_ids: FrozenSet[str],
        dry_run: bool,
    ) -> _TableOutcome:
        outcome = _TableOutcome(stats=TableSyncStats())
        stats = outcome.stats

        # dev keys first, then prod-only keys, both in fetch order
        all_keys = list(dev_map)
        all_keys.extend(key for key in prod_map if key not in dev_map)

        for key in all_keys:
            if key in tombstone_ids:
                continue
            dev_row = dev_map.get(key)
            prod_row = prod_map.get(key)

            if dev_row is None and prod_row is not None:
                await self._write(self.dev, config, prod_row, dry_run)
                outcome.sources[key] = "prod"
                stats.prod_to_dev += 1
            elif dev_row is not None and prod_row is None:
                await self._write(self.prod, config, dev_row, dry_run)
                outcome.sources[key] = "dev"
                stats.dev_to_prod += 1
            elif dev_row is not None and prod_row is not None:
                comparison, usable = safe_compare_timestamps(dev_row, prod_row, config)
                if not usable:
                    outcome.invalid_timestamps += 1
                if comparison != "same":
                    logger.debug("[Sync] %s %s: %s", config.table_name, key, comparison)
                if comparison == "dev-newer":
                    await self._write(self.prod, config, dev_row, dry_run)
                    outcome.sources[key] = "dev"
                    stats.dev_to_prod += 1
                    stats.conflicts += 1
                elif comparison == "prod-newer":
                    await self._write(self.dev, config, prod_row, dry_run)
                    outcome.sources[key] = "prod"
                    stats.prod_to_dev += 1
                    stats.conflicts += 1

        logger.info(
            "[Sync] %s: dev->prod=%s prod->dev=%s conflicts=%s",
            config.table_name,
            stats.dev_to_prod,
            stats.prod_to_dev,
            stats.conflicts,
        )
        return outcome

    async def _write(self, store: Any, config: SyncTableConfig, row: Row, dry_run: bool) -> None:
        if dry_run:
            return
        await upsert_row(store, config, row)

    async def _resolve_singletons(self, tables: List[SyncTableConfig]) -> None:
        changes = await reconcile_singleton_flags(self.dev, self.prod, tables)
        for flag, descriptions in changes.items():
            logger.info("[Sync] %s singleton resolved: %s", flag, "; ".join(descriptions))

    async def _run_second_pass(self, pass_one_sources: Dict[str, Dict[str, str]], warnings: List[str]) -> None:
        deferred = [config for config in self.tables if config.deferred_fk_columns]
        if not deferred:
            return
        logger.info("[Sync] Pass 2: deferred FK columns on %s", [c.table_name for c in deferred])
        for config in deferred:
            outcome = await update_deferred_fk_columns(
                self.dev,
                self.prod,
                config,
                pass_one_sources.get(config.table_name),
                schema=self.schema,
            )
            warnings.extend(outcome["warnings"])
