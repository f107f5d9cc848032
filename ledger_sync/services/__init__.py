"""Services package."""

from ledger_sync.services.remote import (
    InvalidRequestError,
    ProtocolError,
    RateLimitedError,
    RemoteStoreClient,
    RemoteStoreError,
    RemoteUnavailableError,
    UnauthorizedError,
)
from ledger_sync.services.storage import (
    AuditStorageInterface,
    ConflictError,
    Database,
    InvalidTransitionError,
    NotFoundError,
    RecordStoreInterface,
    SqliteAuditStorage,
    SqliteRecordStore,
    StorageConnectionError,
    StorageError,
    StorageWriteError,
)

__all__ = [
    # Remote services
    "InvalidRequestError",
    "ProtocolError",
    "RateLimitedError",
    "RemoteStoreClient",
    "RemoteStoreError",
    "RemoteUnavailableError",
    "UnauthorizedError",
    # Storage services
    "AuditStorageInterface",
    "ConflictError",
    "Database",
    "InvalidTransitionError",
    "NotFoundError",
    "RecordStoreInterface",
    "SqliteAuditStorage",
    "SqliteRecordStore",
    "StorageConnectionError",
    "StorageError",
    "StorageWriteError",
]
