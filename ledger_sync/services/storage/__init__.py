"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the local replica.
Currently implements embedded SQLite as the backend, but designed to be swappable.
"""

from ledger_sync.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    RecordStoreInterface,
    StorageConnectionError,
    StorageError,
    StorageWriteError,
)
from ledger_sync.services.storage.sqlite_store import (
    Database,
    SqliteAuditStorage,
    SqliteRecordStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RecordStoreInterface",
    # Exceptions
    "ConflictError",
    "InvalidTransitionError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    "StorageWriteError",
    # SQLite implementation
    "Database",
    "SqliteAuditStorage",
    "SqliteRecordStore",
]
