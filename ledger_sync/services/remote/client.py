"""
Remote Store Client

Thin async client for the remote (authoritative) replica.

DESIGN DECISION: Every request is raced against an explicit timer
(asyncio.wait_for), independently of whatever the transport does, so a
hung connection can never stall a sync beyond the configured budget.

The client does NOT retry. It classifies failures (see errors.py) and
leaves the retry policy to the coordinator or its caller.
"""

import asyncio
from datetime import timedelta
from typing import Any, Literal, Optional

import httpx
import structlog

from ledger_sync.clock import utc_now
from ledger_sync.config import RemoteSettings, get_settings
from ledger_sync.models.record import (
    DateRange,
    LedgerRecord,
    RecordCategory,
    RecordKind,
    RecordStatus,
)
from ledger_sync.models.sync import RemotePushResult
from ledger_sync.services.remote.errors import (
    InvalidRequestError,
    ProtocolError,
    RateLimitedError,
    RemoteStoreError,
    RemoteUnavailableError,
    UnauthorizedError,
)
from ledger_sync.services.remote.wire import (
    RemoteRecord,
    decode_fetch_response,
    decode_push_response,
)

logger = structlog.get_logger(__name__)

RemoteStatusFilter = Literal["all", "confirmed", "unconfirmed"]

MOCK_RECORD_COUNT = 3


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def create_mock_records(owner_id: str, count: int = MOCK_RECORD_COUNT) -> list[LedgerRecord]:
    """
    Canned remote data for mock online mode.

    Ids and amounts are stable across calls so repeated pulls converge.
    """
    now = utc_now()
    records = []
    for i in range(count):
        stamp = now - timedelta(days=i)
        records.append(LedgerRecord(
            id=f"mock-tx-{i + 1}",
            owner_id=owner_id,
            linked_asset_id=f"mock-img-{i + 1}" if i % 2 == 0 else None,
            kind=RecordKind.DEBIT if i % 2 == 0 else RecordKind.CREDIT,
            category=RecordCategory.SHOPPING if i % 2 == 0 else RecordCategory.OTHER,
            amount=1000 + i * 500,
            description=f"Mock transaction {i + 1}",
            counterparty_name=f"Mock Merchant {i + 1}",
            occurred_on=stamp.date(),
            created_at=stamp,
            updated_at=stamp,
            status=RecordStatus.CONFIRMED if i == 0 else RecordStatus.UNCONFIRMED,
        ))
    return records


class RemoteStoreClient:
    """
    Fetch/push against the remote replica over HTTP.

    Holds no mutable state beyond its configuration and the underlying
    httpx connection pool, so one instance can serve a pull and a push
    at the same time.
    """

    def __init__(
        self,
        settings: Optional[RemoteSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Remote configuration. Falls back to get_settings().remote.
            http_client: Pre-built httpx client (tests pass one with a
                        MockTransport). Closed by close() only if we built it.
        """
        self._settings = settings or get_settings().remote
        self._owns_http_client = http_client is None
        if http_client is None:
            # The transport timeout is only a backstop; wait_for decides
            http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.full_fetch_timeout_seconds + 5.0),
                headers={"Content-Type": "application/json"},
            )
        self._http = http_client

    @property
    def mock_mode(self) -> str:
        return self._settings.mock_mode

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "RemoteStoreClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        if status == 400:
            raise InvalidRequestError("400: Invalid request parameters", status)
        if status in (401, 403):
            raise UnauthorizedError(f"{status}: Unauthorized", status)
        if status == 429:
            raise RateLimitedError(
                "429: Rate limit exceeded",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 500:
            raise RemoteUnavailableError(f"{status}: Server error", status)
        raise RemoteStoreError(f"Request failed: {status}", status)

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        timeout: float,
        operation: str,
    ) -> bytes:
        """POST a JSON body and return the raw response bytes."""
        url = f"{self._settings.base_url}{path}"
        try:
            response = await asyncio.wait_for(self._http.post(url, json=body), timeout=timeout)
        except asyncio.TimeoutError:
            raise RemoteUnavailableError(f"Transaction {operation} timeout ({timeout:g}s)")
        except httpx.TimeoutException as e:
            raise RemoteUnavailableError(f"Transaction {operation} timeout: {e}")
        except httpx.DecodingError as e:
            raise ProtocolError(f"Undecodable {operation} response: {e}")
        except httpx.RequestError as e:
            raise RemoteUnavailableError(f"Network error: {e}")

        self._raise_for_status(response)
        return response.content

    def _check_mock_offline(self) -> None:
        if self.mock_mode == "offline":
            raise RemoteUnavailableError("Network error: offline mode")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def fetch(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
        status_filter: Optional[RemoteStatusFilter] = None,
    ) -> list[LedgerRecord]:
        """
        Read an owner's records from the remote replica.

        Follows nextCursor until the remote stops returning one.

        Raises:
            RemoteStoreError subclass on any failure; ProtocolError if
            a page fails validation or the cursor chain never ends.
        """
        self._check_mock_offline()
        if self.mock_mode == "online":
            records = create_mock_records(owner_id)
            logger.debug("remote_fetch_mocked", owner_id=owner_id, count=len(records))
            return records

        windowed = date_range is not None and not date_range.is_unbounded
        filtered = windowed or status_filter not in (None, "all")
        timeout = (
            self._settings.fetch_timeout_seconds
            if filtered
            else self._settings.full_fetch_timeout_seconds
        )

        body: dict[str, Any] = {
            "ownerId": owner_id,
            "statusFilter": status_filter or "all",
            "limit": self._settings.page_limit,
        }
        if windowed:
            window = {}
            if date_range.start:
                window["startDate"] = date_range.start.isoformat()
            if date_range.end:
                window["endDate"] = date_range.end.isoformat()
            body["dateRange"] = window

        logger.info(
            "remote_fetch_started",
            owner_id=owner_id,
            date_range=body.get("dateRange"),
            status_filter=body["statusFilter"],
        )

        records: list[LedgerRecord] = []
        try:
            for _ in range(self._settings.max_pages):
                payload = await self._post(self._settings.fetch_path, body, timeout, "fetch")
                page = decode_fetch_response(payload, owner_id).unwrap()
                records.extend(page.records)
                if not page.next_cursor:
                    break
                body["cursor"] = page.next_cursor
            else:
                raise ProtocolError(
                    f"Fetch did not finish within {self._settings.max_pages} pages"
                )
        except RemoteStoreError as e:
            logger.error(
                "remote_request_failed",
                operation="fetch",
                owner_id=owner_id,
                error=str(e),
                error_type=type(e).__name__,
                status_code=e.status_code,
            )
            raise

        logger.info("remote_fetch_success", owner_id=owner_id, count=len(records))
        return records

    async def push(
        self,
        owner_id: str,
        records: list[LedgerRecord],
    ) -> RemotePushResult:
        """
        Best-effort batch write. The remote may accept only a subset.

        Returns:
            RemotePushResult with the remote's count and rejected ids
        """
        if not records:
            return RemotePushResult(succeeded_count=0)

        self._check_mock_offline()
        if self.mock_mode == "online":
            logger.debug("remote_push_mocked", owner_id=owner_id, count=len(records))
            return RemotePushResult(succeeded_count=len(records))

        body = {
            "ownerId": owner_id,
            "records": [RemoteRecord.from_record(record).to_wire() for record in records],
        }

        try:
            payload = await self._post(
                self._settings.push_path,
                body,
                self._settings.push_timeout_seconds,
                "push",
            )
            result = decode_push_response(payload).unwrap()
        except RemoteStoreError as e:
            logger.error(
                "remote_request_failed",
                operation="push",
                owner_id=owner_id,
                error=str(e),
                error_type=type(e).__name__,
                status_code=e.status_code,
            )
            raise

        logger.info(
            "remote_push_success",
            owner_id=owner_id,
            sent=len(records),
            succeeded=result.succeeded_count,
            failed=len(result.failed_ids),
        )
        return result
