"""
Audit Logger

DESIGN DECISION: Every sync decision is logged.
This provides:
1. Complete traceability of which copy won for every record
2. Debugging capability when a sync partially fails
3. Visibility of discrepancies even when the local copy wins

The audit logger:
- Is async to not block the sync flows
- Gracefully handles failures (a failed audit write never breaks a sync)
- Supports correlation IDs to trace the events of one sync invocation
"""

from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_sync.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from ledger_sync.models.record import DateRange
from ledger_sync.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def _window(date_range: Optional[DateRange]) -> Optional[dict]:
    if date_range is None or date_range.is_unbounded:
        return None

    def fmt(day: Optional[date]) -> Optional[str]:
        return day.isoformat() if day else None

    return {"start": fmt(date_range.start), "end": fmt(date_range.end)}


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_events table (for persistence), when storage is given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledger_sync.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity is AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_sync_down_started(
        self,
        owner_id: str,
        date_range: Optional[DateRange],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sync_down_started(
            owner_id=owner_id,
            date_range=_window(date_range),
            correlation_id=correlation_id,
        ))

    async def log_sync_down_completed(
        self,
        owner_id: str,
        summary: dict,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sync_down_completed(
            owner_id=owner_id,
            summary=summary,
            correlation_id=correlation_id,
        ))

    async def log_sync_down_aborted(
        self,
        owner_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sync_down_aborted(
            owner_id=owner_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_conflict_resolved(
        self,
        record_id: str,
        winner: str,
        strategy: str,
        correlation_id: UUID,
    ) -> None:
        """Log a conflicting pair and who won it."""
        await self.log(AuditEventBuilder.conflict_resolved(
            record_id=record_id,
            winner=winner,
            strategy=strategy,
            correlation_id=correlation_id,
        ))

    async def log_record_write_failed(
        self,
        record_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.record_write_failed(
            record_id=record_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_sync_up_completed(
        self,
        owner_id: str,
        succeeded: int,
        failed_ids: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sync_up_completed(
            owner_id=owner_id,
            succeeded=succeeded,
            failed_ids=failed_ids,
            correlation_id=correlation_id,
        ))
        if failed_ids:
            await self.log(AuditEventBuilder.push_rejected(
                owner_id=owner_id,
                failed_ids=failed_ids,
                correlation_id=correlation_id,
            ))

    async def log_sync_up_failed(
        self,
        owner_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sync_up_failed(
            owner_id=owner_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_restore_completed(
        self,
        owner_id: str,
        count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.restore_completed(
            owner_id=owner_id,
            count=count,
            correlation_id=correlation_id,
        ))

    async def log_pending_changes_discarded(
        self,
        owner_id: str,
        count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.pending_changes_discarded(
            owner_id=owner_id,
            count=count,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        owner_id: Optional[str] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an unexpected failure that aborts a flow."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            owner_id=owner_id,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a sync invocation.
    Pass it through all subsequent operations.
    """
    return uuid4()
