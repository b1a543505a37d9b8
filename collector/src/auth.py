"""
Bearer token cache for the monitoring API.

Holds the current login token and a client-estimated expiry. The token is
renewed lazily: ``ensure_valid(now)`` logs in only when no token is held or
the lease has run out. The API does not report a token lifetime, so the
lease is a fixed duration (60 minutes by default) counted from the moment
the login succeeded.

Only the scheduler's single cycle calls ``ensure_valid``, so there is never
more than one login in flight and no locking is needed.

CHANGELOG:
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

import httpx
from pydantic import ValidationError

from collector.src.errors import AuthenticationError
from collector.src.models import ApiEnvelope, AuthData

logger = logging.getLogger(__name__)

DEFAULT_LEASE = timedelta(minutes=60)
"""Assumed lifetime of a login token."""


class TokenCache:
    """Lazily renewed bearer token for the monitoring API.

    Args:
        http: Shared ``httpx.AsyncClient`` used for the login call.
        login_url: Absolute URL of the login endpoint.
        username: API account user name.
        password: API account password.
        lease: How long a freshly issued token is considered valid.

    Usage::

        tokens = TokenCache(http, login_url=..., username=..., password=...)
        token = await tokens.ensure_valid(datetime.now(tz=UTC))
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        login_url: str,
        username: str,
        password: str,
        lease: timedelta = DEFAULT_LEASE,
    ) -> None:
        self._http = http
        self._login_url = login_url
        self._username = username
        self._password = password
        self._lease = lease
        self._token: str | None = None
        self._expires_at: datetime | None = None

    @property
    def expires_at(self) -> datetime | None:
        """End of the current token lease, or ``None`` before the first login."""
        return self._expires_at

    def invalidate(self) -> None:
        """Drop the cached token so the next ``ensure_valid`` logs in again."""
        self._token = None
        self._expires_at = None

    async def ensure_valid(self, now: datetime) -> str:
        """Return a token that is valid at *now*, logging in if necessary.

        Args:
            now: Current time, timezone-aware UTC.

        Returns:
            The bearer token string.

        Raises:
            AuthenticationError: If the login call failed or returned no
                token. The previously cached token (if any) is left as it was.
        """
        if self._token is not None and self._expires_at is not None and now < self._expires_at:
            return self._token

        token = await self._login()
        self._token = token
        self._expires_at = now + self._lease
        logger.info("Login succeeded, token valid until %s", self._expires_at.isoformat())
        return token

    async def _login(self) -> str:
        """POST the credentials and extract ``data.token`` from the envelope."""
        try:
            response = await self._http.post(
                self._login_url,
                json={"username": self._username, "password": self._password},
            )
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Login request failed: {exc}") from exc

        if not response.is_success:
            raise AuthenticationError(f"Login failed (HTTP {response.status_code})")

        try:
            envelope = ApiEnvelope[AuthData].model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AuthenticationError("Login response could not be decoded") from exc

        if envelope.data is None or not envelope.data.token:
            raise AuthenticationError(
                f"Authentication token is missing in response (code={envelope.code}, msg={envelope.msg!r})"
            )
        return envelope.data.token
