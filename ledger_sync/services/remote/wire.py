"""
Boundary decoding for the remote wire format.

DESIGN DECISION: Nothing the remote sends is trusted until it has been
validated against these schemas. Validation is all-or-nothing:
- An unknown key fails the response
- A missing required key fails the response
- A wrong type fails the response (amounts must be real integers)

A response that fails is never partially applied. The decoders return
a DecodeResult instead of raising, so the caller decides where the
ProtocolError surfaces.
"""

from datetime import date, datetime
from typing import Any, Generic, Literal, Optional, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from ledger_sync.models.record import (
    LedgerRecord,
    RecordCategory,
    RecordKind,
    RecordStatus,
)
from ledger_sync.models.sync import RemotePushResult
from ledger_sync.services.remote.errors import ProtocolError

T = TypeVar("T")

WireKind = Literal["income", "expense"]

_KIND_FROM_WIRE: dict[str, RecordKind] = {
    "income": RecordKind.CREDIT,
    "expense": RecordKind.DEBIT,
}
_KIND_TO_WIRE: dict[RecordKind, str] = {v: k for k, v in _KIND_FROM_WIRE.items()}


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class RemoteRecord(_WireModel):
    """One record as the remote stores it (camelCase on the wire)."""

    user_id: StrictStr = Field(..., min_length=1)
    transaction_id: StrictStr = Field(..., min_length=1)
    image_id: Optional[StrictStr] = None
    s3_key: Optional[StrictStr] = None
    amount: StrictInt = Field(..., ge=0)
    kind: WireKind = Field(..., alias="type")
    occurred: date = Field(..., alias="date")
    merchant: Optional[StrictStr] = None
    category: RecordCategory
    description: StrictStr
    status: RecordStatus
    created_at: datetime
    updated_at: datetime
    version: StrictInt = Field(default=1, ge=1)

    # Backend bookkeeping, accepted but not synced locally
    confirmed_at: Optional[datetime] = None
    ai_processed: Optional[StrictBool] = None
    validation_errors: Optional[list[Any]] = None
    is_guest: Optional[StrictBool] = None
    ttl: Optional[StrictInt] = None

    def to_record(self) -> LedgerRecord:
        """Map to the domain shape. Never dirty."""
        return LedgerRecord(
            id=self.transaction_id,
            owner_id=self.user_id,
            linked_asset_id=self.image_id,
            remote_asset_key=self.s3_key,
            kind=_KIND_FROM_WIRE[self.kind],
            category=self.category,
            amount=self.amount,
            description=self.description,
            counterparty_name=self.merchant,
            occurred_on=self.occurred,
            created_at=self.created_at,
            updated_at=self.updated_at,
            status=self.status,
            version=self.version,
            dirty=False,
        )

    @classmethod
    def from_record(cls, record: LedgerRecord) -> "RemoteRecord":
        return cls(
            user_id=record.owner_id,
            transaction_id=record.id,
            image_id=record.linked_asset_id,
            s3_key=record.remote_asset_key,
            amount=record.amount,
            kind=_KIND_TO_WIRE[record.kind],
            occurred=record.occurred_on,
            merchant=record.counterparty_name,
            category=record.category,
            description=record.description,
            status=record.status,
            created_at=record.created_at,
            updated_at=record.updated_at,
            version=record.version,
        )

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FetchResponse(_WireModel):
    records: list[RemoteRecord]
    next_cursor: Optional[StrictStr] = None


class PushResponse(_WireModel):
    succeeded_count: StrictInt = Field(..., ge=0)
    failed_ids: list[StrictStr] = Field(default_factory=list)


class FetchPage(BaseModel):
    """One decoded page of a fetch."""

    records: list[LedgerRecord]
    next_cursor: Optional[str] = None


class DecodeResult(Generic[T]):
    """
    Tagged decode outcome: either a value or a ProtocolError.

    Usage:
        result = decode_push_response(body)
        if not result.is_ok:
            ...
        value = result.unwrap()   # raises the ProtocolError on failure
    """

    __slots__ = ("_value", "_error")

    def __init__(self, value: Optional[T] = None, error: Optional[ProtocolError] = None):
        self._value = value
        self._error = error

    @classmethod
    def ok(cls, value: T) -> "DecodeResult[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: ProtocolError) -> "DecodeResult[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self._error is None

    @property
    def value(self) -> Optional[T]:
        return self._value

    @property
    def error(self) -> Optional[ProtocolError]:
        return self._error

    def unwrap(self) -> T:
        if self._error is not None:
            raise self._error
        return self._value

    def __repr__(self) -> str:
        if self.is_ok:
            return f"DecodeResult.ok({self._value!r})"
        return f"DecodeResult.fail({self._error!r})"


def _summarize(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "<root>"
    return f"{error.error_count()} validation error(s), first at {location}: {first['msg']}"


def decode_fetch_response(
    payload: Union[bytes, str],
    owner_id: str,
) -> DecodeResult[FetchPage]:
    """
    Validate a fetch response body and map it to domain records.

    Records owned by anyone other than owner_id fail the whole page.
    """
    try:
        envelope = FetchResponse.model_validate_json(payload)
    except ValidationError as e:
        return DecodeResult.fail(ProtocolError(f"Invalid fetch response: {_summarize(e)}"))

    records = []
    for item in envelope.records:
        if item.user_id != owner_id:
            return DecodeResult.fail(ProtocolError(
                f"Invalid fetch response: record {item.transaction_id} "
                f"belongs to another owner"
            ))
        try:
            records.append(item.to_record())
        except ValidationError as e:
            return DecodeResult.fail(ProtocolError(
                f"Invalid fetch response: record {item.transaction_id}: {_summarize(e)}"
            ))

    return DecodeResult.ok(FetchPage(records=records, next_cursor=envelope.next_cursor))


def decode_push_response(payload: Union[bytes, str]) -> DecodeResult[RemotePushResult]:
    """Validate a push acknowledgement."""
    try:
        envelope = PushResponse.model_validate_json(payload)
    except ValidationError as e:
        return DecodeResult.fail(ProtocolError(f"Invalid push response: {_summarize(e)}"))

    return DecodeResult.ok(RemotePushResult(
        succeeded_count=envelope.succeeded_count,
        failed_ids=list(envelope.failed_ids),
    ))
