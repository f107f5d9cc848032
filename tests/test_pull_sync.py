"""Tests for the pull (remote → local) flow."""

from datetime import date, timedelta

import pytest

from conftest import OWNER, T0, FakeRemoteStore, FlakyRecordStore
from ledger_sync.audit import AuditLogger
from ledger_sync.models.audit import AuditEventType
from ledger_sync.models.record import DateRange, RecordFilters, RecordStatus
from ledger_sync.orchestrator import PullSyncFlow
from ledger_sync.services.remote import ProtocolError, RemoteUnavailableError
from ledger_sync.services.storage import StorageConnectionError

LATER = T0 + timedelta(minutes=5)


@pytest.fixture
def pull(store, remote, audit_storage):
    return PullSyncFlow(store, remote, AuditLogger(audit_storage))


async def all_local(store):
    return await store.list_records(OWNER, RecordFilters(include_deleted=True))


class TestNewFromRemote:
    """Records that only exist remotely."""

    async def test_empty_local_three_remote(self, pull, remote, make_record):
        for i in range(3):
            remote.put(make_record(id=f"tx-{i}"))

        result = await pull.sync_down(OWNER)

        assert result.synced_count == 3
        assert result.conflict_count == 0
        assert result.errors == []
        assert result.remote_count == 3
        assert result.local_count == 0

    async def test_new_records_stored_unchanged(self, pull, store, remote, make_record):
        incoming = make_record(id="tx-new", amount=4321, version=3, updated_at=LATER)
        remote.put(incoming)

        await pull.sync_down(OWNER)

        assert await store.get_record("tx-new") == incoming

    async def test_pulled_records_are_not_dirty(self, pull, store, remote, make_record):
        remote.put(make_record(id="tx-1"))
        await pull.sync_down(OWNER)
        assert await store.list_dirty(OWNER) == []


class TestResolution:
    """Records present on both sides."""

    async def test_confirmed_local_is_immune(self, pull, store, remote, make_record):
        local = make_record(id="X", status=RecordStatus.CONFIRMED, amount=3000)
        await store.upsert_record(local)
        remote.put(make_record(id="X", amount=5000, updated_at=LATER))

        result = await pull.sync_down(OWNER)

        assert (await store.get_record("X")).amount == 3000
        assert result.conflict_count == 1
        assert result.synced_count == 0

    async def test_identical_confirmed_pair_counts_no_conflict(self, pull, store, remote, make_record):
        local = make_record(id="X", status=RecordStatus.CONFIRMED)
        await store.upsert_record(local)
        remote.put(local)

        result = await pull.sync_down(OWNER)

        assert result.conflict_count == 0
        assert result.synced_count == 0

    async def test_newer_remote_replaces_local(self, pull, store, remote, make_record):
        await store.upsert_record(make_record(id="X", amount=1000))
        incoming = make_record(id="X", amount=2000, description="Dinner", updated_at=LATER)
        remote.put(incoming)

        result = await pull.sync_down(OWNER)

        assert await store.get_record("X") == incoming
        assert result.synced_count == 1

    async def test_newer_remote_overwrites_dirty_unconfirmed_edit(self, pull, store, remote, make_record):
        """Test that an older pending edit loses to a newer remote copy."""
        await store.insert_record(make_record(id="X", updated_at=T0 - timedelta(days=1)))
        record = await store.get_record("X")
        incoming = make_record(id="X", amount=8000, updated_at=record.updated_at + timedelta(seconds=1))
        remote.put(incoming)

        await pull.sync_down(OWNER)

        stored = await store.get_record("X")
        assert stored.amount == 8000
        assert stored.dirty is False

    async def test_newer_local_is_kept(self, pull, store, remote, make_record):
        local = make_record(id="X", amount=1500, updated_at=LATER)
        await store.upsert_record(local)
        remote.put(make_record(id="X", amount=1000))

        result = await pull.sync_down(OWNER)

        assert await store.get_record("X") == local
        assert result.synced_count == 0
        assert result.conflict_count == 1

    async def test_remote_delete_propagates(self, pull, store, remote, make_record):
        await store.upsert_record(make_record(id="X"))
        remote.put(make_record(id="X", status=RecordStatus.DELETED, updated_at=LATER))

        await pull.sync_down(OWNER)

        assert await store.list_records(OWNER) == []
        assert (await store.get_record("X")).status == RecordStatus.DELETED

    async def test_local_delete_is_compared(self, pull, store, remote, make_record):
        """Test that a soft-deleted local row takes part in resolution."""
        await store.upsert_record(make_record(id="X", status=RecordStatus.DELETED, updated_at=LATER))
        remote.put(make_record(id="X"))

        result = await pull.sync_down(OWNER)

        assert (await store.get_record("X")).status == RecordStatus.DELETED
        assert result.synced_count == 0

    async def test_local_only_records_untouched(self, pull, store, remote, make_record):
        local = await store.insert_record(make_record(id="only-here"))
        remote.put(make_record(id="tx-1"))

        await pull.sync_down(OWNER)

        assert await store.get_record("only-here") == local


class TestFailures:
    """Aborts and per-record isolation."""

    async def test_remote_failure_aborts_without_writes(self, pull, store, remote, make_record):
        existing = make_record(id="X")
        await store.upsert_record(existing)
        remote.put(make_record(id="tx-1"))
        remote.fetch_error = RemoteUnavailableError("Transaction fetch timeout (10s)")

        result = await pull.sync_down(OWNER)

        assert result.synced_count == 0
        assert result.conflict_count == 0
        assert len(result.errors) == 1
        assert "timeout" in result.errors[0]
        assert result.aborted is True
        assert await all_local(store) == [existing]

    async def test_protocol_error_aborts(self, pull, remote):
        remote.fetch_error = ProtocolError("Invalid fetch response")
        result = await pull.sync_down(OWNER)
        assert result.aborted is True
        assert result.errors == ["Invalid fetch response"]

    async def test_one_failed_write_does_not_abort(self, database, remote, make_record):
        store = FlakyRecordStore(database, fail_ids={"tx-2"})
        for i in range(4):
            remote.put(make_record(id=f"tx-{i}"))

        result = await PullSyncFlow(store, remote).sync_down(OWNER)

        assert result.synced_count == 3
        assert result.errors == ["tx-2: database is locked"]
        assert {r.id for r in await all_local(store)} == {"tx-0", "tx-1", "tx-3"}
        assert result.aborted is False

    async def test_local_read_failure_is_audited_and_raised(self, database, remote, audit_storage, make_record):
        store = FlakyRecordStore(database, fail_reads=True)
        remote.put(make_record(id="tx-1"))

        with pytest.raises(StorageConnectionError):
            await PullSyncFlow(store, remote, AuditLogger(audit_storage)).sync_down(OWNER)

        events = await audit_storage.get_events_by_entity("owner", OWNER)
        assert events[-1].event_type == AuditEventType.SYSTEM_ERROR
        assert events[-1].error_message == "unable to open database file"
        assert events[-1].details["operation"] == "sync_down"
        assert await store.get_record("tx-1") is None


class TestIdempotence:
    async def test_second_pull_is_a_safe_repeat(self, pull, store, remote, make_record):
        remote.put(make_record(id="tx-1"))
        remote.put(make_record(id="tx-2", updated_at=LATER))
        await store.upsert_record(make_record(id="tx-2"))

        first = await pull.sync_down(OWNER)
        state_after_first = await all_local(store)
        second = await pull.sync_down(OWNER)

        assert second.synced_count == first.synced_count
        assert second.errors == []
        assert await all_local(store) == state_after_first


class TestDateWindow:
    """Windowed pulls."""

    async def test_window_limits_remote_set(self, pull, store, remote, make_record):
        remote.put(make_record(id="in", occurred_on=date(2024, 1, 10)))
        remote.put(make_record(id="out", occurred_on=date(2024, 3, 10)))

        window = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31))
        result = await pull.sync_down(OWNER, date_range=window)

        assert result.synced_count == 1
        assert await store.get_record("out") is None

    async def test_local_copy_outside_window_is_still_resolved(self, pull, store, remote, make_record):
        """Test that a record whose date moved out of the window is not blindly overwritten."""
        local = make_record(id="X", occurred_on=date(2024, 2, 20), status=RecordStatus.CONFIRMED)
        await store.upsert_record(local)
        remote.put(make_record(id="X", occurred_on=date(2024, 1, 20), updated_at=LATER))

        window = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31))
        result = await pull.sync_down(OWNER, date_range=window)

        assert await store.get_record("X") == local
        assert result.conflict_count == 1
        assert result.synced_count == 0


class TestAuditTrail:
    async def test_conflicts_and_completion_are_audited(self, pull, store, remote, audit_storage, make_record):
        await store.upsert_record(make_record(id="X", status=RecordStatus.CONFIRMED, amount=3000))
        remote.put(make_record(id="X", amount=5000, updated_at=LATER))

        await pull.sync_down(OWNER)

        conflict_events = await audit_storage.get_events_by_entity("record", "X")
        assert [e.event_type for e in conflict_events] == [AuditEventType.CONFLICT_RESOLVED]
        assert conflict_events[0].details["winner"] == "local"

        owner_events = await audit_storage.get_events_by_entity("owner", OWNER)
        assert [e.event_type for e in owner_events] == [
            AuditEventType.SYNC_DOWN_STARTED,
            AuditEventType.SYNC_DOWN_COMPLETED,
        ]
        assert owner_events[0].correlation_id == owner_events[1].correlation_id

    async def test_routine_resolutions_are_not_persisted(self, pull, store, remote, audit_storage, make_record):
        """Test that repeat pulls of shared records do not grow the audit table."""
        for i in range(3):
            remote.put(make_record(id=f"tx-{i}"))
        await pull.sync_down(OWNER)

        for _ in range(2):
            result = await pull.sync_down(OWNER)
            assert result.conflict_count == 3

        for i in range(3):
            assert await audit_storage.get_events_by_entity("record", f"tx-{i}") == []

    async def test_newer_local_is_persisted(self, pull, store, remote, audit_storage, make_record):
        await store.upsert_record(make_record(id="X", amount=1500, updated_at=LATER))
        remote.put(make_record(id="X"))

        await pull.sync_down(OWNER)

        events = await audit_storage.get_events_by_entity("record", "X")
        assert [e.details["strategy"] for e in events] == ["local_newer"]

    async def test_abort_is_audited(self, pull, remote, audit_storage):
        remote.fetch_error = RemoteUnavailableError("503: Server error", 503)
        await pull.sync_down(OWNER)
        events = await audit_storage.get_events_by_entity("owner", OWNER)
        assert events[-1].event_type == AuditEventType.SYNC_DOWN_ABORTED
        assert events[-1].error_message == "503: Server error"


class TestWithoutAudit:
    async def test_pull_without_audit_logger(self, store, make_record):
        remote = FakeRemoteStore([make_record(id="tx-1")])
        result = await PullSyncFlow(store, remote).sync_down(OWNER)
        assert result.synced_count == 1
