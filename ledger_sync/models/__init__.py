"""
Data Models Package

This package contains all Pydantic models used by Ledger Sync.
All data flowing through the system must conform to these schemas.
"""

from ledger_sync.models.record import (
    LOCAL_ONLY_FIELDS,
    DateRange,
    LedgerRecord,
    RecordCategory,
    RecordFilters,
    RecordKind,
    RecordPatch,
    RecordStatus,
    StatusFilter,
)
from ledger_sync.models.sync import (
    FullSyncResult,
    PushSyncResult,
    RecoveryStatus,
    RemotePushResult,
    SyncResult,
)
from ledger_sync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "LOCAL_ONLY_FIELDS",
    "DateRange",
    "LedgerRecord",
    "RecordCategory",
    "RecordFilters",
    "RecordKind",
    "RecordPatch",
    "RecordStatus",
    "StatusFilter",
    # Sync results
    "FullSyncResult",
    "PushSyncResult",
    "RecoveryStatus",
    "RemotePushResult",
    "SyncResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
