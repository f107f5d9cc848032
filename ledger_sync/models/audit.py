"""
Audit Models for Ledger Sync

Every sync decision is logged for audit purposes.
This provides:
1. Traceability of which replica won for every record
2. Visibility of discrepancies even when the local copy wins
3. Debugging information when a sync partially fails

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Pull (remote → local)
    SYNC_DOWN_STARTED = "sync_down_started"
    SYNC_DOWN_COMPLETED = "sync_down_completed"
    SYNC_DOWN_ABORTED = "sync_down_aborted"
    CONFLICT_RESOLVED = "conflict_resolved"
    RECORD_WRITE_FAILED = "record_write_failed"

    # Push (local → remote)
    SYNC_UP_COMPLETED = "sync_up_completed"
    SYNC_UP_FAILED = "sync_up_failed"
    PUSH_REJECTED = "push_rejected"

    # Recovery
    RESTORE_COMPLETED = "restore_completed"
    PENDING_CHANGES_DISCARDED = "pending_changes_discarded"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'record', 'owner')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events of one sync invocation share it
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit_events table.

        Columns in order:
        (event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type,
            self.entity_id,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_code,
            self.error_message,
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.conflict_resolved(record_id, "local", ...)
    """

    @staticmethod
    def sync_down_started(
        owner_id: str,
        date_range: Optional[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_DOWN_STARTED,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description="Pull sync started",
            details={"date_range": date_range},
        )

    @staticmethod
    def sync_down_completed(
        owner_id: str,
        summary: dict,
        correlation_id: UUID
    ) -> AuditEvent:
        has_errors = bool(summary.get("errors"))
        return AuditEvent(
            event_type=AuditEventType.SYNC_DOWN_COMPLETED,
            severity=AuditSeverity.WARNING if has_errors else AuditSeverity.INFO,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=(
                f"Pull sync completed: {summary.get('synced_count', 0)} synced, "
                f"{summary.get('conflict_count', 0)} conflicts"
            ),
            details=summary,
        )

    @staticmethod
    def sync_down_aborted(
        owner_id: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_DOWN_ABORTED,
            severity=AuditSeverity.ERROR,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description="Pull sync aborted before any local write",
            error_message=error_message,
        )

    @staticmethod
    def conflict_resolved(
        record_id: str,
        winner: str,
        strategy: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONFLICT_RESOLVED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Conflict resolved in favour of {winner} copy ({strategy})",
            details={
                "winner": winner,
                "strategy": strategy,
            },
        )

    @staticmethod
    def record_write_failed(
        record_id: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description="Local write failed during sync",
            error_message=error_message,
        )

    @staticmethod
    def sync_up_completed(
        owner_id: str,
        succeeded: int,
        failed_ids: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_UP_COMPLETED,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"Push sync completed: {succeeded} acknowledged, {len(failed_ids)} rejected",
            details={
                "succeeded": succeeded,
                "failed_ids": failed_ids,
            },
        )

    @staticmethod
    def sync_up_failed(
        owner_id: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_UP_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description="Push sync failed; dirty records kept for the next attempt",
            error_message=error_message,
        )

    @staticmethod
    def push_rejected(
        owner_id: str,
        failed_ids: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUSH_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"Remote rejected {len(failed_ids)} records",
            details={"failed_ids": failed_ids},
        )

    @staticmethod
    def restore_completed(
        owner_id: str,
        count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_COMPLETED,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"Restored {count} records from remote",
            details={"count": count},
        )

    @staticmethod
    def pending_changes_discarded(
        owner_id: str,
        count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENDING_CHANGES_DISCARDED,
            severity=AuditSeverity.WARNING,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"User discarded {count} unsynced changes",
            details={"count": count},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        owner_id: Optional[str] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type="owner" if owner_id else None,
            entity_id=owner_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
