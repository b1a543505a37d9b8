"""
Error taxonomy for the collection cycle.

Each stage of a cycle raises its own error type so the scheduler log shows
where a cycle stopped. None of these are fatal to the process: the scheduler
catches them and the next tick starts a fresh cycle.

CHANGELOG:
- 2025-03-16: Add TokenRejectedError
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations


class CollectorError(Exception):
    """Base class for all collection cycle errors."""


class AuthenticationError(CollectorError):
    """Login failed or the login response carried no token."""


class FetchError(CollectorError):
    """A telemetry endpoint returned an error status or an undecodable body.

    Args:
        endpoint: Short name of the endpoint that failed
            (e.g. ``"getLastPowerData"``).
        message: Human-readable failure description.
    """

    def __init__(self, endpoint: str, message: str) -> None:
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint


class PersistenceError(CollectorError):
    """The store was unreachable or rejected the write."""


class AuditWriteError(CollectorError):
    """Appending to the audit file failed. Logged, never escalated."""


class TokenRejectedError(FetchError):
    """An endpoint refused the bearer token (HTTP 401/403 or an auth error code).

    The cached token must be discarded so the next cycle logs in again.
    """
