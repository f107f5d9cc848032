"""
Result models returned by the sync flows.

Flows return these instead of raising for partial failures, so the
calling service layer always gets a summary it can show the user.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SyncResult(BaseModel):
    """Outcome of one pull (remote → local) invocation."""

    synced_count: int = Field(
        default=0,
        ge=0,
        description="Records written locally (new from remote or remote won)"
    )
    conflict_count: int = Field(
        default=0,
        ge=0,
        description="Pairs the resolver flagged as conflicting, whoever won"
    )
    errors: list[str] = Field(
        default_factory=list,
        description="One entry per failure, '<id>: <message>' for record failures"
    )
    remote_count: int = Field(default=0, ge=0)
    local_count: int = Field(default=0, ge=0)
    aborted: bool = Field(
        default=False,
        description="True when the remote fetch failed and nothing was compared"
    )

    @property
    def ok(self) -> bool:
        return not self.errors


class RemotePushResult(BaseModel):
    """What the remote reports after a push batch."""

    succeeded_count: int = Field(ge=0)
    failed_ids: list[str] = Field(default_factory=list)


class PushSyncResult(BaseModel):
    """Outcome of one push (local → remote) invocation."""

    succeeded: int = Field(
        default=0,
        ge=0,
        description="Records the remote acknowledged"
    )
    failed_ids: list[str] = Field(
        default_factory=list,
        description="Records the remote rejected; they stay dirty"
    )


class FullSyncResult(BaseModel):
    """Push then pull."""

    push: PushSyncResult
    pull: SyncResult


class RecoveryStatus(BaseModel):
    """Whether a device has unsynced work left over from an earlier run."""

    needs_recovery: bool
    dirty_count: int = Field(ge=0)
    local_count: int = Field(ge=0)
    checked_at: Optional[datetime] = None
