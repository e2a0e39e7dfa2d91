from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from .config import Settings
from .sync.service import DatabaseSyncService, SyncResult
from .sync.store import PostgresSyncStore

logger = logging.getLogger("companion_sync")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


def build_service(settings: Settings) -> DatabaseSyncService:
    dev = PostgresSyncStore(
        "dev",
        settings.dev_database_url,
        command_timeout=settings.command_timeout_seconds,
        schema=settings.schema,
    )
    prod = PostgresSyncStore(
        "prod",
        settings.prod_database_url,
        command_timeout=settings.command_timeout_seconds,
        schema=settings.schema,
    )
    return DatabaseSyncService(
        dev,
        prod,
        migrations_table=settings.migrations_table,
        schema=settings.schema,
    )


def format_result(result: SyncResult) -> str:
    mode = "DRY RUN" if result.dry_run else "APPLIED"
    lines = [f"[{mode}] schema version: {result.schema_version}"]
    width = max((len(table) for table in result.stats), default=5)
    lines.append(f"{'table'.ljust(width)}  dev->prod  prod->dev  conflicts")
    for table, stats in result.stats.items():
        lines.append(
            f"{table.ljust(width)}  {stats.dev_to_prod:>9}  {stats.prod_to_dev:>9}  {stats.conflicts:>9}"
        )
    if result.warnings:
        lines.append(f"warnings ({len(result.warnings)}):")
        lines.extend(f"  - {warning}" for warning in result.warnings)
    return "\n".join(lines)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="companion_sync",
        description="Bidirectional last-write-wins sync between the dev and prod databases.",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="apply changes (default is a dry run that only reports what would change)",
    )
    parser.add_argument("--verbose", action="store_true", help="log per-row decisions")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(args.verbose)
    try:
        settings = Settings.from_env()
        settings.validate()
        service = build_service(settings)
        result = asyncio.run(service.sync(dry_run=not args.execute))
    except KeyboardInterrupt:
        logger.info("Sync interrupted; re-run to converge.")
        return 130
    except Exception:
        logger.exception("Database sync failed")
        return 1
    print(format_result(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
