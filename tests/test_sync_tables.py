from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion_sync.sync.tables import (  # noqa: E402
    HISTORY_TOMBSTONE_TABLE,
    SYNC_CONFIG,
    SYNC_TABLE_ORDER,
    SYNC_TABLES,
    SyncTableConfig,
    validate_registry,
)


def test_registry_order_is_fk_safe() -> None:
    assert SYNC_TABLE_ORDER == (
        "users",
        "personas",
        "system_prompts",
        "llm_configs",
        "personalities",
        "personality_owners",
        "personality_aliases",
        "user_personality_configs",
        "conversation_history_tombstones",
        "conversation_history",
        "memories",
        "shapes_persona_mappings",
    )
    position = {name: index for index, name in enumerate(SYNC_TABLE_ORDER)}
    for config in SYNC_TABLES:
        for column, referenced in config.foreign_keys.items():
            if column in config.deferred_fk_columns:
                continue
            assert position[referenced] < position[config.table_name], f"{config.table_name}.{column}"


def test_users_break_cycles_with_deferred_columns() -> None:
    users = SYNC_CONFIG["users"]
    assert users.deferred_fk_columns == frozenset({"default_persona_id", "default_llm_config_id"})
    assert users.deferred_fk_columns <= users.uuid_columns
    assert all(
        not config.deferred_fk_columns for config in SYNC_TABLES if config.table_name != "users"
    )


def test_capability_flags_are_declared_per_table() -> None:
    assert SYNC_CONFIG["memories"].vector_columns == frozenset({"embedding"})
    assert SYNC_CONFIG["llm_configs"].singleton_flags == ("is_default", "is_free_default")
    assert SYNC_CONFIG["conversation_history"].tombstone_table == HISTORY_TOMBSTONE_TABLE
    assert SYNC_CONFIG["personality_owners"].primary_key == ("personality_id", "user_id")
    assert SYNC_CONFIG["personality_owners"].is_composite


def test_recency_field_falls_back_to_created_at() -> None:
    assert SYNC_CONFIG["users"].recency_field == "updated_at"
    assert SYNC_CONFIG["conversation_history"].recency_field == "created_at"
    assert SYNC_CONFIG[HISTORY_TOMBSTONE_TABLE].recency_field == "deleted_at"
    assert SYNC_CONFIG["shapes_persona_mappings"].recency_field == "mapped_at"


def test_cast_for_prefers_vector_then_uuid_then_timestamp() -> None:
    memories = SYNC_CONFIG["memories"]
    assert memories.cast_for("embedding") == "::text::vector"
    assert memories.cast_for("persona_id") == "::uuid"
    assert memories.cast_for("created_at") == "::timestamptz"
    assert memories.cast_for("content") == ""


def test_registry_is_read_only() -> None:
    with pytest.raises(TypeError):
        SYNC_CONFIG["users"] = SYNC_CONFIG["personas"]  # type: ignore[index]


def _config(name: str, **kwargs: object) -> SyncTableConfig:
    base = SyncTableConfig(table_name=name, primary_key=("id",), updated_at="updated_at")
    return replace(base, **kwargs)


def test_validate_registry_rejects_duplicates() -> None:
    with pytest.raises(ValueError, match="registered twice"):
        validate_registry((_config("a"), _config("a")))


def test_validate_registry_requires_recency_field() -> None:
    with pytest.raises(ValueError, match="updated_at or created_at"):
        validate_registry((_config("a", updated_at=None),))


def test_validate_registry_rejects_forward_references() -> None:
    child = _config("child", foreign_keys={"parent_id": "parent"})
    with pytest.raises(ValueError, match="not synced earlier"):
        validate_registry((child, _config("parent")))

    with pytest.raises(ValueError, match="unregistered table"):
        validate_registry((child,))

    # deferring the column makes the same order legal
    validate_registry((replace(child, deferred_fk_columns=frozenset({"parent_id"})), _config("parent")))


def test_validate_registry_rejects_deferred_primary_key() -> None:
    with pytest.raises(ValueError, match="cannot defer primary key"):
        validate_registry((_config("a", deferred_fk_columns=frozenset({"id"})),))


def test_validate_registry_requires_tombstone_table_first() -> None:
    history = _config("history", tombstone_table="graves")
    with pytest.raises(ValueError, match="must be registered before"):
        validate_registry((history, _config("graves")))
    validate_registry((_config("graves"), history))

    composite = replace(history, primary_key=("a", "b"))
    with pytest.raises(ValueError, match="single-column primary key"):
        validate_registry((_config("graves"), composite))


def test_fk_map_lists_only_real_constraints() -> None:
    assert dict(SYNC_CONFIG["shapes_persona_mappings"].foreign_keys) == {"persona_id": "personas"}
    assert "mapped_by" in SYNC_CONFIG["shapes_persona_mappings"].uuid_columns
