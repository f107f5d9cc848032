"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the local replica.
This allows us to:
1. Keep the sync flows independent of the embedded database
2. Wrap the store in tests to inject write failures
3. Swap SQLite for another embedded engine later

The interface is intentionally narrow - we're not building an ORM.
Just the operations the sync engine and the service layer need.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Mapping, Optional, Union
from uuid import UUID

from ledger_sync.models.audit import AuditEvent
from ledger_sync.models.record import LedgerRecord, RecordFilters, RecordPatch


class RecordStoreInterface(ABC):
    """
    Abstract interface for the local record store.

    Mutations made on behalf of the user (insert, update, confirm,
    soft delete) stamp updated_at and set dirty. Writes that carry
    remote data (upsert, bulk upsert) keep the given timestamps and
    never set dirty, otherwise pulled data would be pushed straight back.
    """

    @abstractmethod
    async def list_records(
        self,
        owner_id: str,
        filters: Optional[RecordFilters] = None,
    ) -> list[LedgerRecord]:
        """
        List an owner's records.

        Deleted records are excluded unless filters.include_deleted is set.
        Results are ordered by occurred_on, newest first.
        """
        pass

    @abstractmethod
    async def count_records(
        self,
        owner_id: str,
        filters: Optional[RecordFilters] = None,
    ) -> int:
        """Count records matching the same filters as list_records, ignoring pagination."""
        pass

    @abstractmethod
    async def get_record(self, record_id: str) -> Optional[LedgerRecord]:
        """Retrieve a record by id (deleted records included), None if absent."""
        pass

    @abstractmethod
    async def insert_record(self, record: LedgerRecord) -> LedgerRecord:
        """
        Create a record locally for the first time.

        Returns:
            The stored record (dirty, freshly stamped)

        Raises:
            ConflictError: If the id already exists
        """
        pass

    @abstractmethod
    async def upsert_record(self, record: LedgerRecord) -> None:
        """
        Overwrite every field for record.id, or insert it.

        Idempotent. The stored row is never dirty.
        """
        pass

    @abstractmethod
    async def soft_delete_record(self, record_id: str) -> LedgerRecord:
        """
        Mark a record deleted.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def confirm_record(self, record_id: str) -> LedgerRecord:
        """
        Mark a record confirmed by the user.

        Raises:
            NotFoundError: If the record doesn't exist
            InvalidTransitionError: If the record is deleted
        """
        pass

    @abstractmethod
    async def update_record(
        self,
        record_id: str,
        patch: Union[RecordPatch, Mapping],
    ) -> LedgerRecord:
        """
        Apply only the fields set on the patch.

        An empty patch is a no-op and returns the record unchanged.

        Raises:
            NotFoundError: If the record doesn't exist
            InvalidTransitionError: If the record is deleted
        """
        pass

    @abstractmethod
    async def list_dirty(self, owner_id: str) -> list[LedgerRecord]:
        """Records with unacknowledged local changes, deleted ones included."""
        pass

    @abstractmethod
    async def clear_dirty(
        self,
        record_ids: list[str],
        expected_updated_at: Optional[Mapping[str, datetime]] = None,
    ) -> int:
        """
        Clear the dirty flag on the given records.

        Args:
            record_ids: Records acknowledged by the remote
            expected_updated_at: If given, a row is only cleared when its
                updated_at still equals the stamp that was pushed

        Returns:
            Number of rows cleared
        """
        pass

    @abstractmethod
    async def bulk_upsert(self, records: list[LedgerRecord]) -> int:
        """Upsert each record in turn. Returns the number written."""
        pass

    @abstractmethod
    async def delete_all(self, owner_id: str) -> int:
        """
        Physically remove every record of an owner.

        Dev/test tooling only. Sync paths never call this.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events of one sync invocation, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConflictError(StorageError):
    """Attempted to insert an id that already exists."""
    pass


class InvalidTransitionError(StorageError):
    """Requested status change is not allowed (deleted is terminal)."""
    pass


class StorageWriteError(StorageError):
    """A local write failed (lock, disk, constraint)."""
    pass


class StorageConnectionError(StorageError):
    """Could not open the local database."""
    pass
