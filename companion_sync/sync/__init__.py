from .service import DatabaseSyncService, SyncResult, TableSyncStats
from .store import PostgresSyncStore
from .tables import SYNC_CONFIG, SYNC_TABLE_ORDER, SYNC_TABLES, SyncTableConfig
from .validation import SchemaVersionMismatchError

__all__ = [
    "DatabaseSyncService",
    "PostgresSyncStore",
    "SYNC_CONFIG",
    "SYNC_TABLES",
    "SYNC_TABLE_ORDER",
    "SchemaVersionMismatchError",
    "SyncResult",
    "SyncTableConfig",
    "TableSyncStats",
]
