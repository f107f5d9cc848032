"""
Remote store error taxonomy.

Every error says whether retrying the same call can succeed. The client
never retries on its own; the coordinator (or the caller) reads
`retryable` and decides.
"""

from typing import Optional


class RemoteStoreError(Exception):
    """Base exception for remote store operations."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ProtocolError(RemoteStoreError):
    """Remote response failed schema validation."""
    pass


class InvalidRequestError(RemoteStoreError):
    """HTTP 400: the request shape is wrong."""
    pass


class UnauthorizedError(RemoteStoreError):
    """HTTP 401/403: left to session handling."""
    pass


class RateLimitedError(RemoteStoreError):
    """HTTP 429: back off and try again."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class RemoteUnavailableError(RemoteStoreError):
    """HTTP 5xx, network failure or timeout."""

    retryable = True


def is_retryable(exc: BaseException) -> bool:
    """True for remote errors a later attempt may get past."""
    return isinstance(exc, RemoteStoreError) and exc.retryable
