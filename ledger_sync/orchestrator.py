"""
Sync Orchestrator for Ledger Sync

This module ties together all the components and defines the
end-to-end flows for:
1. Pull sync (remote → fetch → resolve per record → upsert winners)
2. Push sync (dirty records → push → clear acknowledged)
3. Recovery (new-device restore, pending-change checks)

DESIGN DECISION: The orchestrator enforces the boundaries:
- A remote failure aborts a pull before any local write
- One bad record never aborts a batch
- A record only loses its dirty flag after the remote acknowledged it
- Every decision is logged; conflicts that kept the local copy are audited

The flows themselves never retry. Retry with backoff lives in the
SyncCoordinator, on top of them.
"""

import asyncio
from typing import Optional
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ledger_sync.audit import AuditLogger, create_correlation_id
from ledger_sync.clock import utc_now
from ledger_sync.config import Settings, SyncSettings, get_settings
from ledger_sync.models.record import DateRange, LedgerRecord, RecordFilters
from ledger_sync.models.sync import (
    FullSyncResult,
    PushSyncResult,
    RecoveryStatus,
    SyncResult,
)
from ledger_sync.resolution import ResolutionStrategy, resolve_conflict
from ledger_sync.services.remote import (
    RemoteStoreClient,
    RemoteStoreError,
    is_retryable,
)
from ledger_sync.services.storage import (
    Database,
    RecordStoreInterface,
    SqliteAuditStorage,
    SqliteRecordStore,
)

logger = structlog.get_logger(__name__)

# Conflicts persisted to the audit trail: the local copy was kept over a
# differing remote one. Other resolutions go to the structured log only.
AUDITED_STRATEGIES = frozenset({
    ResolutionStrategy.LOCAL_CONFIRMED,
    ResolutionStrategy.LOCAL_NEWER,
})


class PullSyncFlow:
    """
    Orchestrates the pull (remote → local) flow.

    Flow:
    1. Fetch the remote set and the local set (deleted rows included)
    2. Index the local set by id
    3. For each remote record: new → write; existing → resolve, write if remote wins
    4. Isolate each write; collect failures as "<id>: <message>"

    Records that exist only locally are left alone; pushing them is
    the push flow's job.
    """

    def __init__(
        self,
        record_store: RecordStoreInterface,
        remote_client: RemoteStoreClient,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = record_store
        self._remote = remote_client
        self._audit_logger = audit_logger

    async def sync_down(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
        correlation_id: Optional[UUID] = None,
    ) -> SyncResult:
        """
        Pull remote records and reconcile them into the local store.

        Never raises for remote failures: an unreachable remote gives an
        aborted SyncResult with a single error entry and no local writes.
        """
        correlation_id = correlation_id or create_correlation_id()
        log = logger.bind(owner_id=owner_id, correlation_id=str(correlation_id))
        log.info("sync_down_started")

        if self._audit_logger:
            await self._audit_logger.log_sync_down_started(
                owner_id=owner_id,
                date_range=date_range,
                correlation_id=correlation_id,
            )

        # Step 1: both sides at once
        remote_outcome, local_outcome = await asyncio.gather(
            self._remote.fetch(owner_id, date_range=date_range),
            self._store.list_records(
                owner_id,
                RecordFilters(date_range=date_range, include_deleted=True),
            ),
            return_exceptions=True,
        )

        for outcome in (remote_outcome, local_outcome):
            if isinstance(outcome, BaseException) and not isinstance(outcome, RemoteStoreError):
                log.error("sync_down_failed", error=str(outcome), error_type=type(outcome).__name__)
                if self._audit_logger:
                    await self._audit_logger.log_error(
                        error_type=type(outcome).__name__,
                        error_message=str(outcome),
                        owner_id=owner_id,
                        details={"operation": "sync_down"},
                        correlation_id=correlation_id,
                    )
                raise outcome

        if isinstance(remote_outcome, BaseException):
            log.warning("sync_down_aborted", error=str(remote_outcome))
            if self._audit_logger:
                await self._audit_logger.log_sync_down_aborted(
                    owner_id=owner_id,
                    error_message=str(remote_outcome),
                    correlation_id=correlation_id,
                )
            return SyncResult(errors=[str(remote_outcome)], aborted=True)

        remote_records: list[LedgerRecord] = remote_outcome
        local_records: list[LedgerRecord] = local_outcome
        log.info(
            "sync_down_remote_fetched",
            remote_count=len(remote_records),
            local_count=len(local_records),
        )

        # Step 2: index
        local_by_id = {record.id: record for record in local_records}

        synced = 0
        conflicts = 0
        errors: list[str] = []

        # Step 3 + 4: resolve and write, one record at a time
        for remote in remote_records:
            try:
                local = local_by_id.get(remote.id)
                if local is None and date_range is not None:
                    # The local copy may have moved outside the window
                    local = await self._store.get_record(remote.id)

                if local is None:
                    await self._store.upsert_record(remote)
                    local_by_id[remote.id] = remote
                    synced += 1
                    log.debug("sync_record_created", record_id=remote.id)
                    continue

                resolution = resolve_conflict(local, remote)
                if resolution.is_conflict:
                    conflicts += 1
                    log.debug(
                        "sync_conflict_resolved",
                        record_id=remote.id,
                        winner=resolution.winner.value,
                        strategy=resolution.strategy.value,
                    )
                    if self._audit_logger and resolution.strategy in AUDITED_STRATEGIES:
                        await self._audit_logger.log_conflict_resolved(
                            record_id=remote.id,
                            winner=resolution.winner.value,
                            strategy=resolution.strategy.value,
                            correlation_id=correlation_id,
                        )

                if resolution.remote_wins:
                    await self._store.upsert_record(remote)
                    local_by_id[remote.id] = remote
                    synced += 1
                    log.debug("sync_record_updated", record_id=remote.id)
                else:
                    log.debug("sync_record_skipped", record_id=remote.id)
            except Exception as e:
                # A single bad record must not abort the batch
                errors.append(f"{remote.id}: {e}")
                log.error("sync_record_failed", record_id=remote.id, error=str(e))
                if self._audit_logger:
                    await self._audit_logger.log_record_write_failed(
                        record_id=remote.id,
                        error_message=str(e),
                        correlation_id=correlation_id,
                    )

        result = SyncResult(
            synced_count=synced,
            conflict_count=conflicts,
            errors=errors,
            remote_count=len(remote_records),
            local_count=len(local_records),
        )

        log.info(
            "sync_down_completed",
            synced=result.synced_count,
            conflicts=result.conflict_count,
            errors=len(result.errors),
        )
        if self._audit_logger:
            await self._audit_logger.log_sync_down_completed(
                owner_id=owner_id,
                summary=result.model_dump(),
                correlation_id=correlation_id,
            )

        return result


class PushSyncFlow:
    """
    Orchestrates the push (local → remote) flow.

    Flow:
    1. Collect dirty records
    2. Push them in one batch
    3. Clear dirty only on the records the remote acknowledged

    Rejected records stay dirty and go out again on the next call.
    That is the whole retry mechanism of this flow.
    """

    def __init__(
        self,
        record_store: RecordStoreInterface,
        remote_client: RemoteStoreClient,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = record_store
        self._remote = remote_client
        self._audit_logger = audit_logger

    async def sync_up(
        self,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> PushSyncResult:
        """
        Push unacknowledged local changes.

        Raises:
            RemoteStoreError: If the push itself failed (nothing is cleared)
            StorageWriteError: If clearing dirty flags failed (records stay dirty)
        """
        correlation_id = correlation_id or create_correlation_id()
        log = logger.bind(owner_id=owner_id, correlation_id=str(correlation_id))

        dirty = await self._store.list_dirty(owner_id)
        if not dirty:
            log.info("sync_up_no_dirty")
            return PushSyncResult()

        log.info("sync_up_started", dirty_count=len(dirty))

        try:
            remote_result = await self._remote.push(owner_id, dirty)
        except RemoteStoreError as e:
            log.error("sync_up_failed", error=str(e), retryable=e.retryable)
            if self._audit_logger:
                await self._audit_logger.log_sync_up_failed(
                    owner_id=owner_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        sent_ids = {record.id for record in dirty}
        unknown = [i for i in remote_result.failed_ids if i not in sent_ids]
        if unknown:
            log.warning("sync_up_unknown_failed_ids", ids=unknown)

        failed_ids = [i for i in dict.fromkeys(remote_result.failed_ids) if i in sent_ids]
        failed = set(failed_ids)
        acknowledged = [record for record in dirty if record.id not in failed]

        if remote_result.succeeded_count != len(acknowledged):
            log.warning(
                "sync_up_count_mismatch",
                remote_succeeded=remote_result.succeeded_count,
                acknowledged=len(acknowledged),
            )

        cleared = await self._store.clear_dirty(
            [record.id for record in acknowledged],
            expected_updated_at={record.id: record.updated_at for record in acknowledged},
        )
        if cleared < len(acknowledged):
            # Edited again while the push was in flight: stays dirty
            log.info("sync_up_records_changed_in_flight", count=len(acknowledged) - cleared)

        result = PushSyncResult(succeeded=len(acknowledged), failed_ids=failed_ids)

        log.info("sync_up_completed", succeeded=result.succeeded, failed=len(result.failed_ids))
        if self._audit_logger:
            await self._audit_logger.log_sync_up_completed(
                owner_id=owner_id,
                succeeded=result.succeeded,
                failed_ids=result.failed_ids,
                correlation_id=correlation_id,
            )

        return result


class RecoveryFlow:
    """
    Bulk recovery and leftover-work checks.

    restore() provisions a new device from the remote. It writes
    with plain upserts, so it is safe to run again.
    """

    def __init__(
        self,
        record_store: RecordStoreInterface,
        remote_client: RemoteStoreClient,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = record_store
        self._remote = remote_client
        self._audit_logger = audit_logger

    async def restore(
        self,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Copy the full remote set into the local store.

        Returns:
            Number of records written

        Raises:
            RemoteStoreError: If the fetch failed (nothing is written)
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            records = await self._remote.fetch(owner_id)
        except RemoteStoreError as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="remote_store",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        count = await self._store.bulk_upsert(records)

        logger.info("restore_completed", owner_id=owner_id, count=count)
        if self._audit_logger:
            await self._audit_logger.log_restore_completed(
                owner_id=owner_id,
                count=count,
                correlation_id=correlation_id,
            )
        return count

    async def check_status(self, owner_id: str) -> RecoveryStatus:
        """Report unsynced local work left from an earlier session."""
        dirty = await self._store.list_dirty(owner_id)
        local_count = await self._store.count_records(
            owner_id,
            RecordFilters(include_deleted=True),
        )

        status = RecoveryStatus(
            needs_recovery=bool(dirty),
            dirty_count=len(dirty),
            local_count=local_count,
            checked_at=utc_now(),
        )
        if status.needs_recovery:
            logger.info("recovery_needed", owner_id=owner_id, dirty_count=status.dirty_count)
        else:
            logger.debug("recovery_not_needed", owner_id=owner_id)
        return status

    async def discard_pending_changes(
        self,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Drop the dirty flag on every record of an owner.

        The local field values are kept; they simply stop being pushed,
        and the next pull may overwrite them.
        """
        correlation_id = correlation_id or create_correlation_id()

        dirty = await self._store.list_dirty(owner_id)
        cleared = await self._store.clear_dirty([record.id for record in dirty])

        logger.warning("pending_changes_discarded", owner_id=owner_id, count=cleared)
        if self._audit_logger and cleared:
            await self._audit_logger.log_pending_changes_discarded(
                owner_id=owner_id,
                count=cleared,
                correlation_id=correlation_id,
            )
        return cleared


class SyncCoordinator:
    """
    Full sync: push first, then pull.

    Pushing first means local edits reach the remote before the pull
    compares timestamps, so they come back as the remote copy instead
    of being reported as local-wins conflicts.

    The push is retried with exponential backoff, but only for errors
    marked retryable (rate limiting, unavailable remote).
    """

    def __init__(
        self,
        pull_flow: PullSyncFlow,
        push_flow: PushSyncFlow,
        settings: Optional[SyncSettings] = None,
    ):
        self._pull = pull_flow
        self._push = push_flow
        self._settings = settings or get_settings().sync

    async def push_with_retry(
        self,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> PushSyncResult:
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_retryable),
            stop=stop_after_attempt(self._settings.push_retry_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self._settings.retry_wait_min_seconds,
                max=self._settings.retry_wait_max_seconds,
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "sync_up_retry",
                        owner_id=owner_id,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._push.sync_up(owner_id, correlation_id=correlation_id)

    async def full_sync(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
    ) -> FullSyncResult:
        correlation_id = create_correlation_id()
        logger.info("full_sync_started", owner_id=owner_id, correlation_id=str(correlation_id))

        push_result = await self.push_with_retry(owner_id, correlation_id=correlation_id)
        pull_result = await self._pull.sync_down(
            owner_id,
            date_range=date_range,
            correlation_id=correlation_id,
        )

        logger.info(
            "full_sync_complete",
            owner_id=owner_id,
            pushed=push_result.succeeded,
            push_failed=len(push_result.failed_ids),
            pulled=pull_result.synced_count,
            conflicts=pull_result.conflict_count,
            errors=len(pull_result.errors),
        )
        return FullSyncResult(push=push_result, pull=pull_result)


class SyncComponents:
    """Everything create_sync_components wires together."""

    def __init__(
        self,
        database: Database,
        record_store: SqliteRecordStore,
        remote_client: RemoteStoreClient,
        audit_logger: AuditLogger,
        pull_flow: PullSyncFlow,
        push_flow: PushSyncFlow,
        recovery_flow: RecoveryFlow,
        coordinator: SyncCoordinator,
    ):
        self.database = database
        self.record_store = record_store
        self.remote_client = remote_client
        self.audit_logger = audit_logger
        self.pull_flow = pull_flow
        self.push_flow = push_flow
        self.recovery_flow = recovery_flow
        self.coordinator = coordinator

    async def close(self) -> None:
        await self.remote_client.close()
        await self.database.close()


def create_sync_components(
    settings: Optional[Settings] = None,
) -> SyncComponents:
    """
    Factory function to create all sync components.

    Args:
        settings: Root settings. Defaults to get_settings().

    Returns:
        SyncComponents sharing one local database and one remote client
    """
    settings = settings or get_settings()
    sync_settings = settings.sync

    database = Database(settings.local_store)
    record_store = SqliteRecordStore(database)
    remote_client = RemoteStoreClient(settings.remote)

    if sync_settings.audit_enabled:
        audit_logger = AuditLogger(SqliteAuditStorage(database))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    pull_flow = PullSyncFlow(record_store, remote_client, audit_logger)
    push_flow = PushSyncFlow(record_store, remote_client, audit_logger)
    recovery_flow = RecoveryFlow(record_store, remote_client, audit_logger)
    coordinator = SyncCoordinator(pull_flow, push_flow, sync_settings)

    return SyncComponents(
        database=database,
        record_store=record_store,
        remote_client=remote_client,
        audit_logger=audit_logger,
        pull_flow=pull_flow,
        push_flow=push_flow,
        recovery_flow=recovery_flow,
        coordinator=coordinator,
    )
