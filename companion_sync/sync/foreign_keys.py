from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from .rows import build_row_map, fetch_all_rows, safe_compare_timestamps
from .tables import SyncTableConfig
from .upsert import key_values_for, update_column


logger = logging.getLogger("companion_sync")

# Which side supplied the winning row for a key during pass 1: "dev" or "prod".
PassOneSources = Mapping[str, str]


def _direction(comparison: str, pass_one_source: str | None, dev_value: Any, prod_value: Any) -> str | None:
    if comparison == "dev-newer":
        return "dev"
    if comparison == "prod-newer":
        return "prod"
    if pass_one_source is not None:
        return pass_one_source
    # Equal recency and untouched this run: only fill a hole left by an interrupted run.
    if prod_value is None:
        return "dev"
    if dev_value is None:
        return "prod"
    return None


async def update_deferred_fk_columns(
    dev: Any,
    prod: Any,
    config: SyncTableConfig,
    pass_one_sources: PassOneSources | None = None,
    *,
    schema: str = "public",
) -> Dict[str, Any]:
    """Second pass: push deferred FK values now that referenced rows exist everywhere."""
    if not config.deferred_fk_columns:
        return {"updated": 0, "warnings": []}

    columns = sorted(config.deferred_fk_columns)
    sources = pass_one_sources or {}
    logger.info("[Sync] Pass 2: updating deferred FK columns %s on %s", columns, config.table_name)

    dev_map = build_row_map(await fetch_all_rows(dev, config, schema), config.primary_key)
    prod_map = build_row_map(await fetch_all_rows(prod, config, schema), config.primary_key)

    updated = 0
    warnings: List[str] = []
    for key, dev_row in dev_map.items():
        prod_row = prod_map.get(key)
        if prod_row is None:
            logger.debug("[Sync] %s %s missing in prod during pass 2; skipping", config.table_name, key)
            continue

        comparison, _ = safe_compare_timestamps(dev_row, prod_row, config)
        key_values = key_values_for(config, dev_row)
        for column in columns:
            dev_value = dev_row.get(column)
            prod_value = prod_row.get(column)
            if dev_value == prod_value:
                continue

            direction = _direction(comparison, sources.get(key), dev_value, prod_value)
            if direction == "dev":
                await update_column(prod, config, column, dev_value, key_values)
            elif direction == "prod":
                await update_column(dev, config, column, prod_value, key_values)
            else:
                warnings.append(
                    f"{config.table_name}.{column}: {key} differs between dev and prod "
                    "with equal timestamps; left unchanged"
                )
                continue
            updated += 1

    return {"updated": updated, "warnings": warnings}
