from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from .rows import Row, get_primary_key, quote_ident, to_utc
from .tables import SyncTableConfig
from .upsert import key_values_for, update_column


logger = logging.getLogger("companion_sync")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(slots=True)
class SingletonCandidate:
    side: str
    key: str
    key_values: List[Any]
    recency: datetime | None


async def _flag_holders(store: Any, config: SyncTableConfig, flag: str) -> List[Row]:
    return await store.fetch(
        f"SELECT * FROM {quote_ident(config.table_name)} WHERE {quote_ident(flag)} = true"
    )


async def _existing_keys(store: Any, config: SyncTableConfig) -> set[str]:
    pk_list = ", ".join(quote_ident(col) for col in config.primary_key)
    rows = await store.fetch(f"SELECT {pk_list} FROM {quote_ident(config.table_name)}")
    return {get_primary_key(row, config.primary_key) for row in rows}


def _candidate(side: str, config: SyncTableConfig, row: Row) -> SingletonCandidate:
    recency = row.get(config.recency_field) if config.recency_field else None
    return SingletonCandidate(
        side=side,
        key=get_primary_key(row, config.primary_key),
        key_values=key_values_for(config, row),
        recency=to_utc(recency) if isinstance(recency, datetime) else None,
    )


def pick_winner(candidates: List[SingletonCandidate]) -> SingletonCandidate:
    # Most recent wins; on a tie dev is preferred.
    def rank(candidate: SingletonCandidate) -> Tuple[datetime, int]:
        return (candidate.recency or _EPOCH, 1 if candidate.side == "dev" else 0)

    return max(candidates, key=rank)


async def resolve_singleton_flag(
    dev: Any,
    prod: Any,
    config: SyncTableConfig,
    flag: str,
) -> List[str]:
    """Leave ``flag`` true on at most one row across both stores.

    Returns human-readable descriptions of the changes made.
    """
    stores = {"dev": dev, "prod": prod}
    candidates: List[SingletonCandidate] = []
    for side, store in stores.items():
        for row in await _flag_holders(store, config, flag):
            candidates.append(_candidate(side, config, row))

    distinct_keys = {candidate.key for candidate in candidates}
    if len(distinct_keys) <= 1:
        return []

    winner = pick_winner(candidates)
    logger.info(
        "[Sync] Resolving %s.%s singleton conflict across %s rows; winner=%s (%s, %s)",
        config.table_name,
        flag,
        len(distinct_keys),
        winner.key,
        winner.side,
        winner.recency.isoformat() if winner.recency else "no timestamp",
    )

    changes: List[str] = []
    for candidate in candidates:
        if candidate.key == winner.key:
            continue
        await update_column(stores[candidate.side], config, flag, False, candidate.key_values)
        changes.append(f"{config.table_name}.{flag}: cleared on {candidate.key} in {candidate.side}")

    holders_by_side = {side: {c.key for c in candidates if c.side == side} for side in stores}
    for side, store in stores.items():
        if winner.key in holders_by_side[side]:
            continue
        if winner.key not in await _existing_keys(store, config):
            logger.debug(
                "[Sync] %s.%s winner %s does not exist in %s database yet; flag not set there",
                config.table_name,
                flag,
                winner.key,
                side,
            )
            continue
        await update_column(store, config, flag, True, winner.key_values)
        changes.append(f"{config.table_name}.{flag}: set on {winner.key} in {side}")

    return changes


async def reconcile_singleton_flags(dev: Any, prod: Any, tables: List[SyncTableConfig]) -> Dict[str, List[str]]:
    results: Dict[str, List[str]] = {}
    for config in tables:
        for flag in config.singleton_flags:
            changes = await resolve_singleton_flag(dev, prod, config, flag)
            if changes:
                results[f"{config.table_name}.{flag}"] = changes
    return results
