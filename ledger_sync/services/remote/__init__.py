"""
Remote Store Services Package

HTTP client for the remote replica, its wire schemas and error taxonomy.
"""

from ledger_sync.services.remote.errors import (
    InvalidRequestError,
    ProtocolError,
    RateLimitedError,
    RemoteStoreError,
    RemoteUnavailableError,
    UnauthorizedError,
    is_retryable,
)
from ledger_sync.services.remote.wire import (
    DecodeResult,
    FetchPage,
    RemoteRecord,
    decode_fetch_response,
    decode_push_response,
)
from ledger_sync.services.remote.client import RemoteStoreClient

__all__ = [
    # Client
    "RemoteStoreClient",
    # Wire
    "DecodeResult",
    "FetchPage",
    "RemoteRecord",
    "decode_fetch_response",
    "decode_push_response",
    # Exceptions
    "InvalidRequestError",
    "ProtocolError",
    "RateLimitedError",
    "RemoteStoreError",
    "RemoteUnavailableError",
    "UnauthorizedError",
    "is_retryable",
]
