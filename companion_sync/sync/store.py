from __future__ import annotations

import logging
from typing import Any, Dict, List

try:
    import asyncpg
except Exception:  # pragma: no cover - optional dependency at runtime
    asyncpg = None  # type: ignore[assignment]


logger = logging.getLogger("companion_sync")


class PostgresSyncStore:
    """One side (dev or prod) of a sync run, backed by a small asyncpg pool."""

    def __init__(self, name: str, dsn: str, *, command_timeout: float = 30.0, schema: str = "public") -> None:
        self.name = name
        self.dsn = dsn.strip()
        if not self.dsn:
            raise ValueError(f"{name} database DSN cannot be empty")
        self.command_timeout = float(command_timeout)
        self.schema = schema
        self._pool: "asyncpg.Pool | None" = None

    async def _ensure_pool(self) -> "asyncpg.Pool":
        if asyncpg is None:
            raise RuntimeError("Database sync requires asyncpg. Install with: pip install asyncpg")
        if self._pool is None:
            # Timestamps are written as UTC instants; keep the session in UTC so
            # timestamp-without-time-zone columns store them unchanged. Unqualified
            # table names resolve in the configured schema; public stays on the
            # path for extension types such as vector.
            search_path = self.schema if self.schema == "public" else f"{self.schema}, public"
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=2,
                command_timeout=self.command_timeout,
                server_settings={"timezone": "UTC", "search_path": search_path},
            )
        return self._pool

    async def connect(self) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute("SELECT 1")
        logger.debug("Connected to %s database", self.name)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.debug("Closed %s database pool", self.name)

    async def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [dict(row) for row in rows]

    async def execute(self, query: str, *args: Any) -> str:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            return await conn.execute(query, *args)
