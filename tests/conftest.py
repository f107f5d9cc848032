"""Pytest configuration and fixtures."""

from datetime import date, datetime, timezone
from typing import Callable, Optional

import pytest

from ledger_sync.clock import MonotonicClock
from ledger_sync.config import LocalStoreSettings
from ledger_sync.models.record import (
    DateRange,
    LedgerRecord,
    RecordCategory,
    RecordKind,
)
from ledger_sync.models.sync import RemotePushResult
from ledger_sync.services.storage import (
    Database,
    SqliteAuditStorage,
    SqliteRecordStore,
    StorageConnectionError,
    StorageWriteError,
)

OWNER = "user-1"
T0 = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeRemoteStore:
    """
    In-memory stand-in for RemoteStoreClient.

    fetch_error / push_errors let a test make the remote fail;
    rejected_ids are reported back as failed on push.
    """

    def __init__(self, records: Optional[list[LedgerRecord]] = None):
        self.records: dict[str, LedgerRecord] = {}
        for record in records or []:
            self.put(record)
        self.fetch_error: Optional[Exception] = None
        self.push_errors: list[Exception] = []
        self.rejected_ids: set[str] = set()
        self.on_push: Optional[Callable] = None
        self.calls: list[str] = []
        self.pushed: list[list[LedgerRecord]] = []

    def put(self, record: LedgerRecord) -> None:
        self.records[record.id] = record.model_copy(update={"dirty": False})

    async def fetch(self, owner_id, date_range: Optional[DateRange] = None, status_filter=None):
        self.calls.append("fetch")
        if self.fetch_error is not None:
            raise self.fetch_error
        return [
            record.model_copy()
            for record in self.records.values()
            if record.owner_id == owner_id
            and (date_range is None or date_range.contains(record.occurred_on))
        ]

    async def push(self, owner_id, records):
        self.calls.append("push")
        self.pushed.append(list(records))
        if self.push_errors:
            raise self.push_errors.pop(0)
        if self.on_push is not None:
            await self.on_push(records)
        accepted = [r for r in records if r.id not in self.rejected_ids]
        for record in accepted:
            self.put(record)
        return RemotePushResult(
            succeeded_count=len(accepted),
            failed_ids=[r.id for r in records if r.id in self.rejected_ids],
        )

    async def close(self):
        pass


class FlakyRecordStore(SqliteRecordStore):
    """Record store whose upsert fails for chosen ids, or whose reads fail."""

    def __init__(
        self,
        *args,
        fail_ids: Optional[set[str]] = None,
        fail_reads: bool = False,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.fail_ids = fail_ids or set()
        self.fail_reads = fail_reads

    async def list_records(self, owner_id, filters=None):
        if self.fail_reads:
            raise StorageConnectionError("unable to open database file")
        return await super().list_records(owner_id, filters)

    async def upsert_record(self, record: LedgerRecord) -> None:
        if record.id in self.fail_ids:
            raise StorageWriteError("database is locked")
        await super().upsert_record(record)


@pytest.fixture
async def database():
    """In-memory SQLite database with the schema applied."""
    db = Database(LocalStoreSettings(path=":memory:"))
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def fixed_clock():
    """Clock stuck at T0, so every stamp is only ever bumped by 1µs."""
    return MonotonicClock(source=lambda: T0)


@pytest.fixture
def store(database):
    return SqliteRecordStore(database)


@pytest.fixture
def audit_storage(database):
    return SqliteAuditStorage(database)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def make_record():
    """Factory for records with sensible defaults."""

    def _make(**overrides) -> LedgerRecord:
        fields = {
            "owner_id": OWNER,
            "kind": RecordKind.DEBIT,
            "category": RecordCategory.FOOD,
            "amount": 1000,
            "description": "Lunch",
            "counterparty_name": "Cafe",
            "occurred_on": date(2024, 1, 15),
            "created_at": T0,
            "updated_at": T0,
        }
        fields.update(overrides)
        return LedgerRecord(**fields)

    return _make
