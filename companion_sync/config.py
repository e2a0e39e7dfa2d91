from __future__ import annotations

import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _clean_dsn(value: str) -> str:
    cleaned = value.strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


@dataclass(slots=True)
class Settings:
    dev_database_url: str
    prod_database_url: str
    command_timeout_seconds: float
    migrations_table: str
    schema: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            dev_database_url=_clean_dsn(_env_lookup("DEV_DATABASE_URL", aliases=("DATABASE_URL_DEV",)) or ""),
            prod_database_url=_clean_dsn(_env_lookup("PROD_DATABASE_URL", aliases=("DATABASE_URL_PROD",)) or ""),
            command_timeout_seconds=_env_float("SYNC_COMMAND_TIMEOUT_SECONDS", 30.0),
            migrations_table=_env_str("SYNC_MIGRATIONS_TABLE", "_prisma_migrations"),
            schema=_env_str("SYNC_SCHEMA", "public"),
        )

    def validate(self) -> None:
        if not self.dev_database_url:
            raise ValueError("DEV_DATABASE_URL is required")
        if not self.prod_database_url:
            raise ValueError("PROD_DATABASE_URL is required")
        if self.dev_database_url == self.prod_database_url:
            raise ValueError("DEV_DATABASE_URL and PROD_DATABASE_URL must point at different databases")
        if self.command_timeout_seconds < 1:
            raise ValueError("SYNC_COMMAND_TIMEOUT_SECONDS must be >= 1")
        if not _IDENTIFIER_RE.match(self.migrations_table):
            raise ValueError("SYNC_MIGRATIONS_TABLE must be a plain SQL identifier")
        if not _IDENTIFIER_RE.match(self.schema):
            raise ValueError("SYNC_SCHEMA must be a plain SQL identifier")
