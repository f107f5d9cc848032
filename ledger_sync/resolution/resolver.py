"""
Conflict Resolution

DESIGN DECISION: Resolution is a PURE function of the two copies.
No storage, no clock, no I/O. Given the same (local, remote) pair it
always returns the same decision, so a pull is deterministic and each
record can be resolved independently of every other record.

RULES (first match wins):
1. Local copy confirmed by the user → local wins, whatever the timestamps.
   Flagged as a conflict only if the replicated fields differ.
2. Remote updated_at newer → remote wins.
3. Equal updated_at → remote wins (the server copy is authoritative on a
   tie). Always flagged, even for identical payloads.
4. Local updated_at newer → local wins.

Rules 2-4 are all flagged as conflicts: the pair existed on both sides
and needed a decision.
"""

from enum import Enum

import structlog
from pydantic import BaseModel

from ledger_sync.models.record import LedgerRecord, RecordStatus

logger = structlog.get_logger(__name__)


class Winner(str, Enum):
    """Which copy is retained."""
    LOCAL = "local"
    REMOTE = "remote"


class ResolutionStrategy(str, Enum):
    """Which rule decided."""
    LOCAL_CONFIRMED = "local_confirmed_wins"
    REMOTE_NEWER = "remote_newer"
    REMOTE_DEFAULT = "remote_default"
    LOCAL_NEWER = "local_newer"


class Resolution(BaseModel):
    """Outcome of resolving one pair."""

    winner: Winner
    is_conflict: bool
    strategy: ResolutionStrategy

    @property
    def remote_wins(self) -> bool:
        return self.winner is Winner.REMOTE


def resolve_conflict(local: LedgerRecord, remote: LedgerRecord) -> Resolution:
    """
    Decide which copy of one record survives.

    Raises:
        ValueError: If the two copies are not the same record
    """
    if local.id != remote.id:
        raise ValueError(f"Cannot resolve different records: {local.id} vs {remote.id}")

    if local.status is RecordStatus.CONFIRMED:
        resolution = Resolution(
            winner=Winner.LOCAL,
            is_conflict=local.differs_from(remote),
            strategy=ResolutionStrategy.LOCAL_CONFIRMED,
        )
    elif remote.updated_at > local.updated_at:
        resolution = Resolution(
            winner=Winner.REMOTE,
            is_conflict=True,
            strategy=ResolutionStrategy.REMOTE_NEWER,
        )
    elif remote.updated_at == local.updated_at:
        resolution = Resolution(
            winner=Winner.REMOTE,
            is_conflict=True,
            strategy=ResolutionStrategy.REMOTE_DEFAULT,
        )
    else:
        resolution = Resolution(
            winner=Winner.LOCAL,
            is_conflict=True,
            strategy=ResolutionStrategy.LOCAL_NEWER,
        )

    logger.debug(
        "sync_conflict_resolved",
        record_id=local.id,
        winner=resolution.winner.value,
        strategy=resolution.strategy.value,
        is_conflict=resolution.is_conflict,
        local_updated_at=local.updated_at.isoformat(),
        remote_updated_at=remote.updated_at.isoformat(),
    )
    return resolution
