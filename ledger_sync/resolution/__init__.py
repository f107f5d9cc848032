"""Conflict resolution package."""

from ledger_sync.resolution.resolver import (
    Resolution,
    ResolutionStrategy,
    Winner,
    resolve_conflict,
)

__all__ = ["Resolution", "ResolutionStrategy", "Winner", "resolve_conflict"]
