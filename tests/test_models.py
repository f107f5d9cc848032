"""
Tests for Ledger Sync

Test strategy:
1. Unit tests for individual components (models, resolver, wire decoding)
2. Integration tests for flows (with an in-memory remote and SQLite store)
3. No real network calls in tests (fakes and httpx.MockTransport)
"""

import json
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from ledger_sync.models.record import (
    DateRange,
    LedgerRecord,
    RecordCategory,
    RecordFilters,
    RecordKind,
    RecordPatch,
    RecordStatus,
)
from ledger_sync.models.sync import SyncResult
from ledger_sync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestRecordModels:
    """Tests for the record model."""

    def test_record_creation(self, make_record):
        """Test LedgerRecord creation with defaults."""
        record = make_record()
        assert record.owner_id == "user-1"
        assert record.currency == "JPY"
        assert record.status == RecordStatus.UNCONFIRMED
        assert record.version == 1
        assert record.dirty is False
        assert record.id

    def test_record_ids_are_unique(self, make_record):
        """Test that new records get distinct ids."""
        assert make_record().id != make_record().id

    def test_record_rejects_negative_amount(self, make_record):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValidationError):
            make_record(amount=-1)

    def test_record_rejects_other_currency(self, make_record):
        """Test that only JPY is accepted."""
        with pytest.raises(ValidationError):
            make_record(currency="USD")

    def test_record_rejects_unknown_category(self, make_record):
        """Test that the category set is closed."""
        with pytest.raises(ValidationError):
            make_record(category="purchase")

    def test_naive_timestamps_are_utc(self, make_record):
        """Test that naive timestamps are taken as UTC."""
        record = make_record(updated_at=datetime(2024, 1, 1, 9, 30))
        assert record.updated_at == datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)

    def test_offset_timestamps_are_normalized(self, make_record):
        """Test that other offsets are converted to UTC."""
        jst = timezone(timedelta(hours=9))
        record = make_record(updated_at=datetime(2024, 1, 1, 18, 0, tzinfo=jst))
        assert record.updated_at.tzinfo == timezone.utc
        assert record.updated_at.hour == 9

    def test_strings_are_kept_verbatim(self, make_record):
        """Test that replicated text is neither trimmed nor capped."""
        record = make_record(id="tx-1 ", description="  Lunch  ", counterparty_name="M" * 500)
        assert record.id == "tx-1 "
        assert record.description == "  Lunch  "
        assert len(record.counterparty_name) == 500

    def test_sync_fields_exclude_local_only(self, make_record):
        """Test that dirty and confidence are not replicated."""
        fields = make_record(confidence=0.9, dirty=True).sync_fields()
        assert "dirty" not in fields
        assert "confidence" not in fields
        assert fields["amount"] == 1000

    def test_differs_from_ignores_local_only_fields(self, make_record):
        """Test that only replicated fields count as a difference."""
        record = make_record()
        assert not record.differs_from(record.model_copy(update={"dirty": True, "confidence": 0.5}))
        assert record.differs_from(record.model_copy(update={"amount": 2000}))

    def test_is_deleted(self, make_record):
        """Test the deleted shortcut."""
        assert make_record(status=RecordStatus.DELETED).is_deleted
        assert not make_record().is_deleted


class TestRecordStatus:
    """Tests for status transitions."""

    def test_unconfirmed_transitions(self):
        assert RecordStatus.UNCONFIRMED.can_transition_to(RecordStatus.CONFIRMED)
        assert RecordStatus.UNCONFIRMED.can_transition_to(RecordStatus.DELETED)

    def test_confirmed_transitions(self):
        assert RecordStatus.CONFIRMED.can_transition_to(RecordStatus.DELETED)
        assert not RecordStatus.CONFIRMED.can_transition_to(RecordStatus.UNCONFIRMED)

    def test_deleted_is_terminal(self):
        """Test that nothing leaves DELETED."""
        for target in RecordStatus:
            assert not RecordStatus.DELETED.can_transition_to(target)


class TestRecordPatch:
    """Tests for partial edits."""

    def test_changes_only_include_set_fields(self):
        """Test that unset fields are not applied."""
        patch = RecordPatch(amount=2500)
        assert patch.changes() == {"amount": 2500}

    def test_explicit_none_is_a_change(self):
        """Test that clearing a field counts as setting it."""
        patch = RecordPatch(counterparty_name=None)
        assert patch.changes() == {"counterparty_name": None}
        assert not patch.is_empty

    def test_empty_patch(self):
        assert RecordPatch().is_empty

    def test_patch_rejects_unknown_fields(self):
        """Test that identity and status are not editable through a patch."""
        with pytest.raises(ValidationError):
            RecordPatch(status="confirmed")
        with pytest.raises(ValidationError):
            RecordPatch(owner_id="someone-else")

    def test_patch_validates_values(self):
        with pytest.raises(ValidationError):
            RecordPatch(amount=-5)

    def test_patch_strips_and_caps_user_text(self):
        """Test that user edits are trimmed and length-checked."""
        assert RecordPatch(description="  Lunch  ").description == "Lunch"
        with pytest.raises(ValidationError):
            RecordPatch(counterparty_name="M" * 201)
        with pytest.raises(ValidationError):
            RecordPatch(description="d" * 1001)


class TestQueryModels:
    """Tests for date ranges and filters."""

    def test_date_range_order(self):
        """Test that end before start is rejected."""
        with pytest.raises(ValidationError):
            DateRange(start=date(2024, 2, 1), end=date(2024, 1, 1))

    def test_date_range_contains_is_inclusive(self):
        window = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31))
        assert window.contains(date(2024, 1, 1))
        assert window.contains(date(2024, 1, 31))
        assert not window.contains(date(2024, 2, 1))

    def test_open_ended_range(self):
        window = DateRange(start=date(2024, 1, 1))
        assert not window.is_unbounded
        assert window.contains(date(2030, 1, 1))
        assert DateRange().is_unbounded

    def test_filters_exclude_deleted_by_default(self):
        assert RecordFilters().include_deleted is False

    def test_filters_reject_bad_pagination(self):
        with pytest.raises(ValidationError):
            RecordFilters(limit=0)
        with pytest.raises(ValidationError):
            RecordFilters(offset=-1)


class TestSyncResult:
    """Tests for result models."""

    def test_empty_result_is_ok(self):
        result = SyncResult()
        assert result.ok
        assert result.synced_count == 0
        assert result.aborted is False

    def test_result_with_errors_is_not_ok(self):
        assert not SyncResult(errors=["tx-1: database is locked"]).ok


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.SYNC_DOWN_STARTED,
            description="Pull sync started",
        )
        assert event.event_id is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.RESTORE_COMPLETED,
            entity_type="owner",
            entity_id="user-1",
            description="Restored",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "restore_completed"
        assert log_dict["entity_id"] == "user-1"

    def test_audit_event_to_row(self):
        """Test conversion to an audit_events row."""
        event = AuditEvent(
            event_type=AuditEventType.PUSH_REJECTED,
            description="Rejected",
            details={"failed_ids": ["tx-1"]},
        )
        row = event.to_row()
        assert len(row) == 11
        assert row[2] == "push_rejected"
        assert json.loads(row[8]) == {"failed_ids": ["tx-1"]}

    def test_audit_event_builder_conflict_resolved(self):
        """Test conflict event builder."""
        correlation_id = uuid4()
        event = AuditEventBuilder.conflict_resolved(
            record_id="tx-1",
            winner="local",
            strategy="local_confirmed_wins",
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.CONFLICT_RESOLVED
        assert event.entity_type == "record"
        assert event.entity_id == "tx-1"
        assert event.details["winner"] == "local"
        assert event.correlation_id == correlation_id

    def test_audit_event_builder_sync_down_completed_with_errors(self):
        """Test that a pull with record errors is a warning."""
        event = AuditEventBuilder.sync_down_completed(
            owner_id="user-1",
            summary={"synced_count": 2, "conflict_count": 0, "errors": ["tx-3: locked"]},
            correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.WARNING
        assert "2 synced" in event.description

    def test_audit_event_builder_system_error(self):
        event = AuditEventBuilder.system_error(
            error_type="StorageConnectionError",
            error_message="unable to open database file",
            owner_id="user-1",
        )
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.severity == AuditSeverity.ERROR
        assert event.entity_type == "owner"
        assert event.entity_id == "user-1"
        assert AuditEventBuilder.system_error("X", "boom").entity_type is None


class TestRecordEnums:
    """Tests for enum values shared with the wire."""

    def test_all_categories_exist(self):
        expected = {"food", "transport", "shopping", "entertainment", "utilities", "health", "other"}
        assert {c.value for c in RecordCategory} == expected

    def test_kind_values(self):
        assert {k.value for k in RecordKind} == {"credit", "debit"}

    def test_record_equality_survives_copy(self, make_record):
        record = make_record()
        assert LedgerRecord.model_validate(record.model_dump()) == record
