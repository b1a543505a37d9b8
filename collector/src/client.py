"""
Authenticated client for the three report endpoints of the monitoring API.

Issues one GET per endpoint with ``Authorization: Bearer <token>``, unwraps
the ``{code, msg, data}`` envelope and decodes ``data`` into the matching
payload model. Requests go out in a fixed order (live, daily, statistics)
and the first failure aborts the whole fetch, so a cycle never merges a
partial set of payloads.

The underlying ``httpx.AsyncClient`` is created once per process by
:func:`create_http_client` and shared by the token cache and this client,
so connections are pooled and kept alive across cycles.

CHANGELOG:
- 2025-03-16: Report refused tokens as TokenRejectedError
- 2025-03-09: Log envelopes that arrive without a data object
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import TypeVar

import httpx
from pydantic import ValidationError

from collector.src.errors import FetchError, TokenRejectedError
from collector.src.models import ApiEnvelope, ApiModel, DailyPayload, LivePayload, StatsPayload

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LIVE_ENDPOINT = "getLastPowerData"
DAILY_ENDPOINT = "staticsByDay"
STATS_ENDPOINT = "getEnergyStatistics"

_PATHS: dict[str, str] = {
    LIVE_ENDPOINT: "api/report/energyStorage/getLastPowerData",
    DAILY_ENDPOINT: "api/report/power/staticsByDay",
    STATS_ENDPOINT: "api/report/energy/getEnergyStatistics",
}
"""Endpoint name -> path relative to the API base URL."""

DEFAULT_TIMEOUT_S: float = 100.0
"""Overall timeout per request in seconds."""

KEEPALIVE_EXPIRY_S: float = 900.0
"""Idle pooled connections are recycled after 15 minutes."""

AUTH_FAILURE_CODES: frozenset[int] = frozenset({401, 403})
"""HTTP statuses and envelope codes that mean the token was refused."""

PayloadT = TypeVar("PayloadT", bound=ApiModel)


@dataclass(frozen=True, slots=True)
class SiteIdentifiers:
    """Identifiers of the monitored site as the API knows it.

    Attributes:
        sys_sn: Inverter system serial number.
        station_id: Station identifier (may be empty).
    """

    sys_sn: str
    station_id: str = ""


def create_http_client(
    base_url: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the process-wide pooled HTTP client.

    Args:
        base_url: API base URL; report paths are resolved relative to it.
        timeout_s: Overall timeout per request.
        transport: Optional transport override (tests pass an
            ``httpx.MockTransport``).

    Returns:
        An ``httpx.AsyncClient`` with keep-alive pooling. The caller owns it
        and must close it (``async with`` or ``aclose()``).
    """
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout_s,
        limits=httpx.Limits(max_keepalive_connections=4, keepalive_expiry=KEEPALIVE_EXPIRY_S),
        transport=transport,
    )


class TelemetryClient:
    """Fetches and decodes the live, daily and statistics payloads.

    Args:
        http: Shared ``httpx.AsyncClient`` configured with the API base URL.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def fetch_all(
        self,
        token: str,
        site: SiteIdentifiers,
        day: date,
    ) -> tuple[LivePayload | None, DailyPayload | None, StatsPayload | None]:
        """Fetch all three payloads for *site* on *day*.

        A payload is ``None`` when the API answered successfully but without
        a ``data`` object; the normalizer then falls back to zero values.

        Args:
            token: Bearer token from the token cache.
            site: Site identifiers.
            day: UTC calendar day for the daily and statistics endpoints.

        Returns:
            ``(live, daily, stats)``.

        Raises:
            FetchError: On the first endpoint that fails; the remaining
                endpoints are not requested.
        """
        iso_day = day.isoformat()

        live = await self._fetch(
            LIVE_ENDPOINT,
            {"sysSn": site.sys_sn, "stationId": site.station_id},
            token,
            LivePayload,
        )
        daily = await self._fetch(
            DAILY_ENDPOINT,
            {"sysSn": site.sys_sn, "date": iso_day},
            token,
            DailyPayload,
        )
        # The statistics endpoint is queried without a station id; a single
        # day is requested by passing the same begin and end date.
        stats = await self._fetch(
            STATS_ENDPOINT,
            {"sysSn": site.sys_sn, "stationId": "", "beginDate": iso_day, "endDate": iso_day},
            token,
            StatsPayload,
        )
        return live, daily, stats

    async def _fetch(
        self,
        endpoint: str,
        params: dict[str, str],
        token: str,
        payload_type: type[PayloadT],
    ) -> PayloadT | None:
        """GET one endpoint and decode its envelope.

        Raises:
            FetchError: On transport errors, non-2xx status, an empty body,
                invalid JSON or an envelope that fails validation.
            TokenRejectedError: If the token was refused, either by HTTP
                status or by an envelope code without data.
        """
        try:
            response = await self._http.get(
                _PATHS[endpoint],
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise FetchError(endpoint, f"request failed: {exc}") from exc

        if response.status_code in AUTH_FAILURE_CODES:
            raise TokenRejectedError(endpoint, f"HTTP {response.status_code}")
        if not response.is_success:
            raise FetchError(endpoint, f"HTTP {response.status_code}")

        if not response.content.strip():
            raise FetchError(endpoint, "empty response body")

        try:
            envelope = ApiEnvelope[payload_type].model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise FetchError(endpoint, "response could not be decoded") from exc

        if envelope.data is None and envelope.code in AUTH_FAILURE_CODES:
            raise TokenRejectedError(endpoint, f"token rejected (code={envelope.code}, msg={envelope.msg!r})")
        if envelope.data is None:
            logger.warning(
                "%s returned no data (code=%s, msg=%r), using defaults",
                endpoint,
                envelope.code,
                envelope.msg,
            )
        return envelope.data
