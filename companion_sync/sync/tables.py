from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True, slots=True)
class SyncTableConfig:
    """Per-table sync declaration.

    Capability flags (vector columns, tombstone governance, singleton flags,
    deferred FK columns) are declared here so the merge loop never branches on
    table names.
    """

    table_name: str
    primary_key: tuple[str, ...]
    uuid_columns: frozenset[str] = frozenset()
    timestamp_columns: frozenset[str] = frozenset()
    deferred_fk_columns: frozenset[str] = frozenset()
    updated_at: str | None = None
    created_at: str | None = None
    vector_columns: frozenset[str] = frozenset()
    tombstone_table: str | None = None
    singleton_flags: tuple[str, ...] = ()
    foreign_keys: Mapping[str, str] = field(default_factory=dict)

    @property
    def recency_field(self) -> str | None:
        return self.updated_at or self.created_at

    @property
    def is_composite(self) -> bool:
        return len(self.primary_key) > 1

    def cast_for(self, column: str) -> str:
        if column in self.vector_columns:
            return "::text::vector"
        if column in self.uuid_columns:
            return "::uuid"
        if column in self.timestamp_columns:
            return "::timestamptz"
        return ""


def _table(
    table_name: str,
    *,
    pk: str | tuple[str, ...] = "id",
    uuid: tuple[str, ...] = (),
    timestamps: tuple[str, ...] = ("created_at", "updated_at"),
    deferred: tuple[str, ...] = (),
    updated_at: str | None = "updated_at",
    created_at: str | None = "created_at",
    vector: tuple[str, ...] = (),
    tombstone_table: str | None = None,
    singleton_flags: tuple[str, ...] = (),
    foreign_keys: dict[str, str] | None = None,
) -> SyncTableConfig:
    primary_key = (pk,) if isinstance(pk, str) else tuple(pk)
    return SyncTableConfig(
        table_name=table_name,
        primary_key=primary_key,
        uuid_columns=frozenset(uuid),
        timestamp_columns=frozenset(timestamps),
        deferred_fk_columns=frozenset(deferred),
        updated_at=updated_at,
        created_at=created_at,
        vector_columns=frozenset(vector),
        tombstone_table=tombstone_table,
        singleton_flags=tuple(singleton_flags),
        foreign_keys=MappingProxyType(dict(foreign_keys or {})),
    )


HISTORY_TOMBSTONE_TABLE = "conversation_history_tombstones"

# Topological order of FK dependencies. users <-> personas and
# users <-> llm_configs are cycles broken by deferring the users side.
_REGISTRY: tuple[SyncTableConfig, ...] = (
    _table(
        "users",
        uuid=("id", "default_llm_config_id", "default_persona_id"),
        timestamps=("nsfw_verified_at", "created_at", "updated_at"),
        deferred=("default_persona_id", "default_llm_config_id"),
        foreign_keys={"default_persona_id": "personas", "default_llm_config_id": "llm_configs"},
    ),
    _table(
        "personas",
        uuid=("id", "owner_id"),
        foreign_keys={"owner_id": "users"},
    ),
    _table("system_prompts", uuid=("id",)),
    _table(
        "llm_configs",
        uuid=("id", "owner_id"),
        singleton_flags=("is_default", "is_free_default"),
        foreign_keys={"owner_id": "users"},
    ),
    _table(
        "personalities",
        uuid=("id", "system_prompt_id", "owner_id"),
        foreign_keys={"system_prompt_id": "system_prompts", "owner_id": "users"},
    ),
    _table(
        "personality_owners",
        pk=("personality_id", "user_id"),
        uuid=("personality_id", "user_id"),
        foreign_keys={"personality_id": "personalities", "user_id": "users"},
    ),
    _table(
        "personality_aliases",
        uuid=("id", "personality_id"),
        foreign_keys={"personality_id": "personalities"},
    ),
    _table(
        "user_personality_configs",
        uuid=("id", "user_id", "personality_id", "persona_id", "llm_config_id"),
        foreign_keys={
            "user_id": "users",
            "personality_id": "personalities",
            "persona_id": "personas",
            "llm_config_id": "llm_configs",
        },
    ),
    _table(
        HISTORY_TOMBSTONE_TABLE,
        uuid=("id", "personality_id", "persona_id"),
        timestamps=("deleted_at",),
        updated_at=None,
        created_at="deleted_at",
        foreign_keys={"personality_id": "personalities", "persona_id": "personas"},
    ),
    _table(
        "conversation_history",
        uuid=("id", "personality_id", "persona_id"),
        timestamps=("deleted_at", "edited_at", "created_at"),
        updated_at=None,
        tombstone_table=HISTORY_TOMBSTONE_TABLE,
        foreign_keys={"personality_id": "personalities", "persona_id": "personas"},
    ),
    _table(
        "memories",
        uuid=("id", "persona_id", "personality_id", "legacy_shapes_user_id", "chunk_group_id"),
        timestamps=("summarized_at", "created_at", "updated_at"),
        vector=("embedding",),
        foreign_keys={"persona_id": "personas", "personality_id": "personalities"},
    ),
    _table(
        "shapes_persona_mappings",
        uuid=("id", "shapes_user_id", "persona_id", "mapped_by"),
        timestamps=("mapped_at",),
        updated_at=None,
        created_at="mapped_at",
        foreign_keys={"persona_id": "personas"},
    ),
)


def validate_registry(tables: tuple[SyncTableConfig, ...]) -> None:
    seen: dict[str, int] = {}
    for index, config in enumerate(tables):
        name = config.table_name
        if name in seen:
            raise ValueError(f"Table {name!r} is registered twice")
        seen[name] = index

    for index, config in enumerate(tables):
        name = config.table_name
        if not config.primary_key or not all(config.primary_key):
            raise ValueError(f"Table {name!r} must declare a primary key")
        if config.recency_field is None:
            raise ValueError(f"Table {name!r} must declare updated_at or created_at")
        overlap = config.deferred_fk_columns.intersection(config.primary_key)
        if overlap:
            raise ValueError(f"Table {name!r} cannot defer primary key columns: {sorted(overlap)}")
        if config.tombstone_table is not None:
            if config.is_composite:
                raise ValueError(f"Tombstoned table {name!r} must have a single-column primary key")
            position = seen.get(config.tombstone_table)
            if position is None or position >= index:
                raise ValueError(
                    f"Tombstone table {config.tombstone_table!r} must be registered before {name!r}"
                )
        for column, referenced in config.foreign_keys.items():
            if column in config.deferred_fk_columns:
                continue
            position = seen.get(referenced)
            if position is None:
                raise ValueError(f"{name}.{column} references unregistered table {referenced!r}")
            if position >= index:
                raise ValueError(
                    f"{name}.{column} references {referenced!r}, which is not synced earlier; "
                    "declare the column deferred or reorder the registry"
                )


validate_registry(_REGISTRY)

SYNC_TABLES: tuple[SyncTableConfig, ...] = _REGISTRY
SYNC_TABLE_ORDER: tuple[str, ...] = tuple(config.table_name for config in SYNC_TABLES)
SYNC_CONFIG: Mapping[str, SyncTableConfig] = MappingProxyType(
    {config.table_name: config for config in SYNC_TABLES}
)
