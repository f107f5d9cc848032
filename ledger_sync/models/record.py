"""
Core Data Models for Ledger Sync

These models define the strict schemas for the synchronized record and
the filters used to query it. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and the wire
4. Give the conflict resolver one comparable shape for both replicas

DESIGN DECISION: Deletion is a status value, not a separate table.
A deleted record is an ordinary record and takes part in conflict
resolution like any other field state.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class RecordKind(str, Enum):
    """Direction of money flow."""
    CREDIT = "credit"
    DEBIT = "debit"


class RecordCategory(str, Enum):
    """
    Supported spending categories.

    Closed set: an unknown category on the wire fails validation.
    """
    FOOD = "food"
    TRANSPORT = "transport"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    UTILITIES = "utilities"
    HEALTH = "health"
    OTHER = "other"


class RecordStatus(str, Enum):
    """
    Record lifecycle status.

    unconfirmed → confirmed, unconfirmed|confirmed → deleted.
    DELETED is terminal (soft delete: the row is kept).
    """
    UNCONFIRMED = "unconfirmed"
    CONFIRMED = "confirmed"
    DELETED = "deleted"

    def can_transition_to(self, target: "RecordStatus") -> bool:
        if self is RecordStatus.DELETED:
            return False
        if self is RecordStatus.CONFIRMED:
            return target in (RecordStatus.CONFIRMED, RecordStatus.DELETED)
        return True


class StatusFilter(str, Enum):
    """Status filter accepted by local queries."""
    PENDING = "pending"      # status == unconfirmed
    CONFIRMED = "confirmed"


# Fields that exist only on the local replica, or that the remote
# does not store. They never take part in conflict comparison.
LOCAL_ONLY_FIELDS = frozenset({"dirty", "confidence"})


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# CORE RECORD MODEL
# =============================================================================

class LedgerRecord(BaseModel):
    """
    The synchronized unit: one financial transaction.

    The same shape is used for both replicas. `dirty` only has meaning
    locally and is never sent to the remote.

    Strings are kept exactly as given. Trimming and length caps belong
    to user edits (RecordPatch), not to replicated data.
    """

    # Identity
    id: str = Field(
        default_factory=lambda: str(uuid4()),
        min_length=1,
        description="Globally unique id, stable across replicas"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Account the record belongs to"
    )

    # Weak references (lookup only, not owned)
    linked_asset_id: Optional[str] = Field(
        default=None,
        description="Associated receipt image"
    )
    remote_asset_key: Optional[str] = Field(
        default=None,
        description="Remote object key, lets sync skip re-transferring the image"
    )

    # Money
    kind: RecordKind
    category: RecordCategory
    amount: int = Field(
        ...,
        ge=0,
        description="Amount in minor currency units"
    )
    currency: Literal["JPY"] = "JPY"

    description: str = ""
    counterparty_name: Optional[str] = Field(
        default=None,
        description="Merchant or payer"
    )
    occurred_on: date = Field(
        ...,
        description="Calendar date of the real-world event"
    )

    # Timestamps
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Refreshed on every mutating write; primary conflict signal"
    )

    status: RecordStatus = RecordStatus.UNCONFIRMED
    confidence: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Extraction confidence from the OCR pipeline (informational)"
    )
    version: int = Field(
        default=1,
        ge=1,
        description="Revision counter, incremented by local mutations"
    )
    dirty: bool = Field(
        default=False,
        description="Local change not yet acknowledged by the remote"
    )

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        return _as_utc(v)

    def sync_fields(self) -> dict[str, Any]:
        """Field values shared by both replicas."""
        return self.model_dump(exclude=set(LOCAL_ONLY_FIELDS))

    def differs_from(self, other: "LedgerRecord") -> bool:
        """True if any replicated field value differs."""
        return self.sync_fields() != other.sync_fields()

    @property
    def is_deleted(self) -> bool:
        return self.status is RecordStatus.DELETED


class RecordPatch(BaseModel):
    """
    Partial edit of a record.

    Only fields explicitly set are applied. Identity, ownership,
    timestamps, status and bookkeeping fields are not editable here.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    kind: Optional[RecordKind] = None
    category: Optional[RecordCategory] = None
    amount: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, max_length=1000)
    counterparty_name: Optional[str] = Field(default=None, max_length=200)
    occurred_on: Optional[date] = None
    linked_asset_id: Optional[str] = None
    remote_asset_key: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)

    @property
    def is_empty(self) -> bool:
        return not self.model_fields_set


# =============================================================================
# QUERY MODELS
# =============================================================================

class DateRange(BaseModel):
    """Inclusive calendar window on occurred_on. Either end may be open."""

    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode='after')
    def validate_order(self) -> 'DateRange':
        if self.start and self.end and self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, day: date) -> bool:
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True


class RecordFilters(BaseModel):
    """
    Filters for listing and counting local records.

    include_deleted defaults to False; the sync path sets it so that
    deletions are visible to conflict comparison.
    """

    date_range: Optional[DateRange] = None
    status: Optional[StatusFilter] = None
    kind: Optional[RecordKind] = None
    category: Optional[RecordCategory] = None
    include_deleted: bool = False

    # Pagination (ignored by count)
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)
