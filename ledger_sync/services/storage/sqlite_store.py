"""
SQLite Storage Implementation

DESIGN DECISION: The local replica is an embedded SQLite database because:
1. It works fully offline
2. It gives us real transactions for per-record read-modify-write
3. It is a single file, easy to back up or wipe on a device

All access goes through one Database object per file. Writes run inside
BEGIN IMMEDIATE transactions behind an asyncio lock, so a pull writing a
record and a user editing the same record are serialized: the last
write wins at the storage layer and a row is never half-updated.

The implementation follows the abstract interface, so the sync flows
never see SQL.
"""

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable, Mapping, Optional, Union
from uuid import UUID

import aiosqlite
import structlog
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledger_sync.clock import MonotonicClock, default_clock
from ledger_sync.config import LocalStoreSettings, get_settings
from ledger_sync.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger_sync.models.record import (
    LedgerRecord,
    RecordFilters,
    RecordPatch,
    RecordStatus,
    StatusFilter,
)
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

logger = structlog.get_logger(__name__)


RECORD_COLUMNS = [
    "id",
    "owner_id",
    "linked_asset_id",
    "remote_asset_key",
    "kind",
    "category",
    "amount",
    "currency",
    "description",
    "counterparty_name",
    "occurred_on",
    "created_at",
    "updated_at",
    "status",
    "confidence",
    "version",
    "dirty",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    linked_asset_id TEXT,
    remote_asset_key TEXT,
    kind TEXT NOT NULL,
    category TEXT NOT NULL,
    amount INTEGER NOT NULL,
    currency TEXT NOT NULL DEFAULT 'JPY',
    description TEXT NOT NULL DEFAULT '',
    counterparty_name TEXT,
    occurred_on TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    status TEXT NOT NULL,
    confidence REAL,
    version INTEGER NOT NULL DEFAULT 1,
    dirty INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_records_owner_date ON records(owner_id, occurred_on);
CREATE INDEX IF NOT EXISTS idx_records_owner_dirty ON records(owner_id, dirty);

CREATE TABLE IF NOT EXISTS audit_events (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT,
    error_code TEXT,
    error_message TEXT
);
CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_events(correlation_id);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_events(entity_type, entity_id);
"""

# SQLite's default limit on bound parameters is 999
_ID_CHUNK = 500

MEMORY_PATH = ":memory:"


def _ts(value: datetime) -> str:
    """Uniform ISO-8601 text so stored stamps compare and round-trip exactly."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class Database:
    """
    Wrapper for the local SQLite database.

    Handles:
    - WAL mode and busy timeout for file databases
    - Row factory for dict-like access
    - Schema creation on first connect
    - Serialized write transactions
    """

    def __init__(self, settings: Optional[LocalStoreSettings] = None):
        self._settings = settings or get_settings().local_store
        self._connection: Optional[aiosqlite.Connection] = None
        self._connect_lock = asyncio.Lock()
        self._lock = asyncio.Lock()

    @property
    def is_memory(self) -> bool:
        return self._settings.path == MEMORY_PATH

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(sqlite3.OperationalError),
        reraise=True,
    )
    async def _open(self) -> aiosqlite.Connection:
        if not self.is_memory:
            Path(self._settings.path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode: transactions are opened explicitly
        connection = await aiosqlite.connect(self._settings.path, isolation_level=None)
        connection.row_factory = aiosqlite.Row
        try:
            if not self.is_memory:
                await connection.execute("PRAGMA journal_mode=WAL")
            await connection.execute(f"PRAGMA busy_timeout={int(self._settings.busy_timeout_ms)}")
            await connection.executescript(SCHEMA)
        except sqlite3.Error:
            await connection.close()
            raise
        return connection

    async def connect(self) -> aiosqlite.Connection:
        """Get or create the connection."""
        async with self._connect_lock:
            if self._connection is None:
                try:
                    self._connection = await self._open()
                except sqlite3.Error as e:
                    raise StorageConnectionError(
                        f"Failed to open local database {self._settings.path}: {e}"
                    )
                logger.debug("local_database_connected", path=self._settings.path)
            return self._connection

    async def close(self) -> None:
        async with self._connect_lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None
                logger.debug("local_database_closed", path=self._settings.path)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Write transaction with automatic rollback on error.

        Usage:
            async with db.transaction() as conn:
                await conn.execute("UPDATE ...")
        """
        conn = await self.connect()
        async with self._lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            else:
                await conn.execute("COMMIT")

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        conn = await self.connect()
        async with self._lock:
            async with conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        conn = await self.connect()
        async with self._lock:
            async with conn.execute(sql, params) as cursor:
                return await cursor.fetchone()


class SqliteRecordStore(RecordStoreInterface):
    """
    SQLite implementation of the local record store.

    One row per record id. Soft-deleted rows stay in the table.
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        self._db = database or Database()
        self._clock = clock or default_clock

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    def _record_to_row(self, record: LedgerRecord) -> tuple:
        """Convert a LedgerRecord to a row in RECORD_COLUMNS order."""
        return (
            record.id,
            record.owner_id,
            record.linked_asset_id,
            record.remote_asset_key,
            record.kind.value,
            record.category.value,
            record.amount,
            record.currency,
            record.description,
            record.counterparty_name,
            record.occurred_on.isoformat(),
            _ts(record.created_at),
            _ts(record.updated_at),
            record.status.value,
            record.confidence,
            record.version,
            1 if record.dirty else 0,
        )

    def _row_to_record(self, row: aiosqlite.Row) -> LedgerRecord:
        """Convert a stored row to a LedgerRecord."""
        try:
            return LedgerRecord(
                id=row["id"],
                owner_id=row["owner_id"],
                linked_asset_id=row["linked_asset_id"],
                remote_asset_key=row["remote_asset_key"],
                kind=row["kind"],
                category=row["category"],
                amount=row["amount"],
                currency=row["currency"],
                description=row["description"],
                counterparty_name=row["counterparty_name"],
                occurred_on=date.fromisoformat(row["occurred_on"]),
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
                status=row["status"],
                confidence=row["confidence"],
                version=row["version"],
                dirty=bool(row["dirty"]),
            )
        except (ValidationError, ValueError) as e:
            raise StorageError(f"Corrupt record row {row['id']}: {e}")

    async def _select_one(
        self,
        conn: aiosqlite.Connection,
        record_id: str,
    ) -> Optional[LedgerRecord]:
        async with conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)) as cursor:
            row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def _write_row(self, conn: aiosqlite.Connection, record: LedgerRecord) -> None:
        """Insert or fully overwrite the row for record.id."""
        placeholders = ", ".join("?" for _ in RECORD_COLUMNS)
        assignments = ", ".join(
            f"{col} = excluded.{col}" for col in RECORD_COLUMNS if col != "id"
        )
        await conn.execute(
            f"INSERT INTO records ({', '.join(RECORD_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {assignments}",
            self._record_to_row(record),
        )

    def _build_where(
        self,
        owner_id: str,
        filters: RecordFilters,
    ) -> tuple[str, list]:
        clauses = ["owner_id = ?"]
        params: list = [owner_id]

        if not filters.include_deleted:
            clauses.append("status != ?")
            params.append(RecordStatus.DELETED.value)

        if filters.date_range:
            if filters.date_range.start:
                clauses.append("occurred_on >= ?")
                params.append(filters.date_range.start.isoformat())
            if filters.date_range.end:
                clauses.append("occurred_on <= ?")
                params.append(filters.date_range.end.isoformat())

        if filters.status == StatusFilter.PENDING:
            clauses.append("status = ?")
            params.append(RecordStatus.UNCONFIRMED.value)
        elif filters.status == StatusFilter.CONFIRMED:
            clauses.append("status = ?")
            params.append(RecordStatus.CONFIRMED.value)

        if filters.kind:
            clauses.append("kind = ?")
            params.append(filters.kind.value)
        if filters.category:
            clauses.append("category = ?")
            params.append(filters.category.value)

        return " AND ".join(clauses), params

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_records(
        self,
        owner_id: str,
        filters: Optional[RecordFilters] = None,
    ) -> list[LedgerRecord]:
        """List records with optional filters."""
        filters = filters or RecordFilters()
        where, params = self._build_where(owner_id, filters)
        sql = (
            f"SELECT * FROM records WHERE {where} "
            "ORDER BY occurred_on DESC, created_at DESC, id ASC"
        )
        if filters.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([filters.limit, filters.offset])
        elif filters.offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(filters.offset)

        try:
            rows = await self._db.fetch_all(sql, tuple(params))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list records: {e}")
        return [self._row_to_record(row) for row in rows]

    async def count_records(
        self,
        owner_id: str,
        filters: Optional[RecordFilters] = None,
    ) -> int:
        where, params = self._build_where(owner_id, filters or RecordFilters())
        try:
            row = await self._db.fetch_one(
                f"SELECT COUNT(*) AS count FROM records WHERE {where}",
                tuple(params),
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count records: {e}")
        return row["count"] if row else 0

    async def get_record(self, record_id: str) -> Optional[LedgerRecord]:
        try:
            row = await self._db.fetch_one("SELECT * FROM records WHERE id = ?", (record_id,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get record {record_id}: {e}")
        return self._row_to_record(row) if row else None

    async def list_dirty(self, owner_id: str) -> list[LedgerRecord]:
        try:
            rows = await self._db.fetch_all(
                "SELECT * FROM records WHERE owner_id = ? AND dirty = 1 "
                "ORDER BY updated_at ASC, id ASC",
                (owner_id,),
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list dirty records: {e}")
        return [self._row_to_record(row) for row in rows]

    # -------------------------------------------------------------------------
    # Remote-originated writes (never dirty, never restamped)
    # -------------------------------------------------------------------------

    async def upsert_record(self, record: LedgerRecord) -> None:
        clean = record.model_copy(update={"dirty": False})
        try:
            async with self._db.transaction() as conn:
                await self._write_row(conn, clean)
        except sqlite3.Error as e:
            raise StorageWriteError(f"Failed to upsert record {record.id}: {e}")

    async def bulk_upsert(self, records: list[LedgerRecord]) -> int:
        written = 0
        for record in records:
            await self.upsert_record(record)
            written += 1
        return written

    # -------------------------------------------------------------------------
    # User-originated writes (stamped, dirty)
    # -------------------------------------------------------------------------

    async def insert_record(self, record: LedgerRecord) -> LedgerRecord:
        stored = record.model_copy(update={
            "updated_at": self._clock.stamp_after(record.updated_at),
            "dirty": True,
        })
        placeholders = ", ".join("?" for _ in RECORD_COLUMNS)
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    f"INSERT INTO records ({', '.join(RECORD_COLUMNS)}) VALUES ({placeholders})",
                    self._record_to_row(stored),
                )
        except sqlite3.IntegrityError:
            raise ConflictError(f"Record already exists: {record.id}")
        except sqlite3.Error as e:
            raise StorageWriteError(f"Failed to insert record {record.id}: {e}")
        return stored

    async def _mutate(
        self,
        record_id: str,
        action: str,
        apply: Callable[[LedgerRecord], Optional[LedgerRecord]],
    ) -> LedgerRecord:
        """
        Atomic read-modify-write of one record.

        `apply` returns the changed record, or None for a no-op.
        Changed records are stamped, versioned and marked dirty.
        """
        try:
            async with self._db.transaction() as conn:
                current = await self._select_one(conn, record_id)
                if current is None:
                    raise NotFoundError(f"Record not found: {record_id}")

                changed = apply(current)
                if changed is None:
                    return current

                stored = changed.model_copy(update={
                    "updated_at": self._clock.stamp_after(current.updated_at),
                    "version": current.version + 1,
                    "dirty": True,
                })
                await self._write_row(conn, stored)
        except sqlite3.Error as e:
            raise StorageWriteError(f"Failed to {action} record {record_id}: {e}")

        logger.debug("record_mutated", record_id=record_id, action=action, version=stored.version)
        return stored

    async def soft_delete_record(self, record_id: str) -> LedgerRecord:
        def apply(current: LedgerRecord) -> Optional[LedgerRecord]:
            if current.is_deleted:
                return None
            return current.model_copy(update={"status": RecordStatus.DELETED})

        return await self._mutate(record_id, "delete", apply)

    async def confirm_record(self, record_id: str) -> LedgerRecord:
        def apply(current: LedgerRecord) -> Optional[LedgerRecord]:
            if not current.status.can_transition_to(RecordStatus.CONFIRMED):
                raise InvalidTransitionError(
                    f"Cannot confirm record {record_id} in status {current.status.value}"
                )
            if current.status is RecordStatus.CONFIRMED:
                return None
            return current.model_copy(update={"status": RecordStatus.CONFIRMED})

        return await self._mutate(record_id, "confirm", apply)

    async def update_record(
        self,
        record_id: str,
        patch: Union[RecordPatch, Mapping],
    ) -> LedgerRecord:
        if not isinstance(patch, RecordPatch):
            patch = RecordPatch.model_validate(dict(patch))

        def apply(current: LedgerRecord) -> Optional[LedgerRecord]:
            if patch.is_empty:
                return None
            if current.is_deleted:
                raise InvalidTransitionError(f"Cannot edit deleted record {record_id}")
            # Re-validate the merged record so a bad patch never reaches the row
            return LedgerRecord.model_validate({**current.model_dump(), **patch.changes()})

        return await self._mutate(record_id, "update", apply)

    async def clear_dirty(
        self,
        record_ids: list[str],
        expected_updated_at: Optional[Mapping[str, datetime]] = None,
    ) -> int:
        if not record_ids:
            return 0

        cleared = 0
        try:
            async with self._db.transaction() as conn:
                if expected_updated_at is None:
                    for start in range(0, len(record_ids), _ID_CHUNK):
                        chunk = record_ids[start:start + _ID_CHUNK]
                        marks = ", ".join("?" for _ in chunk)
                        cursor = await conn.execute(
                            f"UPDATE records SET dirty = 0 WHERE dirty = 1 AND id IN ({marks})",
                            tuple(chunk),
                        )
                        cleared += cursor.rowcount
                        await cursor.close()
                else:
                    for record_id in record_ids:
                        stamp = expected_updated_at.get(record_id)
                        if stamp is None:
                            cursor = await conn.execute(
                                "UPDATE records SET dirty = 0 WHERE dirty = 1 AND id = ?",
                                (record_id,),
                            )
                        else:
                            cursor = await conn.execute(
                                "UPDATE records SET dirty = 0 "
                                "WHERE dirty = 1 AND id = ? AND updated_at = ?",
                                (record_id, _ts(stamp)),
                            )
                        cleared += cursor.rowcount
                        await cursor.close()
        except sqlite3.Error as e:
            raise StorageWriteError(f"Failed to clear dirty flags: {e}")
        return cleared

    async def delete_all(self, owner_id: str) -> int:
        try:
            async with self._db.transaction() as conn:
                cursor = await conn.execute("DELETE FROM records WHERE owner_id = ?", (owner_id,))
                deleted = cursor.rowcount
                await cursor.close()
        except sqlite3.Error as e:
            raise StorageWriteError(f"Failed to delete records for {owner_id}: {e}")
        logger.warning("records_purged", owner_id=owner_id, count=deleted)
        return deleted


class SqliteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, database: Optional[Database] = None):
        self._db = database or Database()

    def _row_to_event(self, row: aiosqlite.Row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
            description=row["description"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
            error_code=row["error_code"],
            error_message=row["error_message"],
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        placeholders = ", ".join("?" for _ in AUDIT_COLUMNS)
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    f"INSERT INTO audit_events ({', '.join(AUDIT_COLUMNS)}) VALUES ({placeholders})",
                    event.to_row(),
                )
            return True
        except (sqlite3.Error, StorageError) as e:
            # Audit logging must not break the sync itself
            logger.warning("audit_event_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def _query(self, sql: str, params: tuple) -> list[AuditEvent]:
        try:
            rows = await self._db.fetch_all(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get audit events: {e}")
        return [self._row_to_event(row) for row in rows]

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._query(
            "SELECT * FROM audit_events WHERE correlation_id = ? ORDER BY timestamp ASC, rowid ASC",
            (str(correlation_id),),
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return await self._query(
            "SELECT * FROM audit_events WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY timestamp ASC, rowid ASC",
            (entity_type, entity_id),
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return await self._query(
            "SELECT * FROM audit_events ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (limit,),
        )
