from .sync import DatabaseSyncService, PostgresSyncStore, SchemaVersionMismatchError, SyncResult

__all__ = ["DatabaseSyncService", "PostgresSyncStore", "SchemaVersionMismatchError", "SyncResult"]
