"""
Collector daemon entrypoint and the single collection cycle.

One cycle:
1. ensure a valid bearer token (login only when the cached one expired),
2. fetch the live, daily and statistics payloads,
3. merge them into one NormalizedRecord (W -> kW, nulls -> 0/False),
4. insert it idempotently for the configured sensor and hour.

The CycleScheduler fires a cycle every FETCH_INTERVAL_MINUTES, drops ticks
that would overlap a running cycle, and logs cycle failures without ever
stopping. Graceful shutdown on SIGTERM/SIGINT sets a shared asyncio.Event;
the in-flight cycle is allowed to finish before the process exits.

Structured JSON logging is used for all events. A HealthWriter instance
tracks the last cycle, the last success, consecutive failures and skipped
ticks in a JSON health file.

CHANGELOG:
- 2025-03-16: Discard the cached token when an endpoint refuses it
- 2025-03-09: Record skipped ticks in the health file
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import json
import logging
import signal
import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from collector.src.errors import TokenRejectedError
from collector.src.normalizer import merge

if TYPE_CHECKING:
    from collector.src.auth import TokenCache
    from collector.src.client import SiteIdentifiers, TelemetryClient
    from collector.src.health import HealthWriter
    from collector.src.recorder import Recorder, WriteOutcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging for the collector.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    # httpx logs every request at INFO; one line per endpoint per cycle is noise.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _masked_secret(value: str | None) -> str:
    """Return a short non-reversible fingerprint of a secret for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: object) -> None:
    """Log a config summary at startup, excluding secrets.

    The password is replaced by a length + hash fingerprint and the database
    URL is logged with its password hidden.

    Args:
        settings: A CollectorSettings instance (or any object with the same attrs).
    """
    from sqlalchemy.engine import make_url
    from sqlalchemy.exc import ArgumentError

    try:
        database_url = make_url(settings.database_url).render_as_string(hide_password=True)  # type: ignore[union-attr]
    except ArgumentError:
        database_url = "<unparseable>"

    logger.info(
        "Collector starting with config: "
        "base_url=%s, login_url=%s, api_username=%s, sys_sn=%s, station_id=%s, "
        "central_id=%s, sensor_id=%s, fetch_interval_minutes=%s, "
        "database_url=%s, audit_log_path=%s, health_path=%s, "
        "http_timeout_s=%s, token_lease_minutes=%s, run_immediately=%s, "
        "api_password_masked=%s",
        settings.base_url,  # type: ignore[union-attr]
        settings.login_url,  # type: ignore[union-attr]
        settings.api_username,  # type: ignore[union-attr]
        settings.sys_sn,  # type: ignore[union-attr]
        settings.station_id,  # type: ignore[union-attr]
        settings.central_id,  # type: ignore[union-attr]
        settings.sensor_id,  # type: ignore[union-attr]
        settings.fetch_interval_minutes,  # type: ignore[union-attr]
        database_url,
        settings.audit_log_path,  # type: ignore[union-attr]
        settings.health_path,  # type: ignore[union-attr]
        settings.http_timeout_s,  # type: ignore[union-attr]
        settings.token_lease_minutes,  # type: ignore[union-attr]
        settings.run_immediately,  # type: ignore[union-attr]
        _masked_secret(settings.api_password),  # type: ignore[union-attr]
    )


# ---------------------------------------------------------------------------
# Single cycle (easily testable)
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _record_health(health: HealthWriter | None, *, success: bool) -> None:
    if health is None:
        return
    try:
        health.record_cycle(success=success)
    except OSError:
        logger.warning("Failed to write health file", exc_info=True)


async def run_cycle(
    *,
    tokens: TokenCache,
    client: TelemetryClient,
    recorder: Recorder,
    site: SiteIdentifiers,
    central_id: str,
    sensor_id: int,
    health: HealthWriter | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> WriteOutcome:
    """Execute one authenticate-fetch-merge-persist cycle.

    Errors are not caught here beyond updating the health file; the
    scheduler logs them and moves on to the next tick. A refused token
    is dropped from the cache so the next cycle logs in again.

    Args:
        tokens: Token cache for the API login.
        client: Telemetry client for the three report endpoints.
        recorder: Store writer.
        site: Site identifiers for the API queries.
        central_id: Site identifier embedded in the record.
        sensor_id: Sensor identifier for the store key.
        health: HealthWriter instance, or None to skip health writes.
        clock: Source of the current UTC time.

    Returns:
        The outcome of the insert.

    Raises:
        AuthenticationError, FetchError, PersistenceError: Whatever stage
            failed; nothing is persisted after a failed login or fetch.
    """
    try:
        started = clock()
        token = await tokens.ensure_valid(started)
        try:
            live, daily, stats = await client.fetch_all(token, site, started.date())
        except TokenRejectedError as exc:
            logger.warning("Token refused by %s, discarding cached token", exc.endpoint)
            tokens.invalidate()
            raise

        merged_at = clock()
        record = merge(live, daily, stats, central_id=central_id, ts=merged_at)
        outcome = await recorder.persist(record, sensor_id, now=merged_at)
    except Exception:
        _record_health(health, success=False)
        raise

    _record_health(health, success=True)
    logger.info(
        "Cycle complete: sensor=%s generation_kw=%.3f soc=%.1f outcome=%s",
        sensor_id,
        record.generation,
        record.battery_soc,
        outcome.name,
    )
    return outcome


def _skip_reporter(health: HealthWriter) -> Callable[[int], None]:
    """Return an on_skip callback that updates *health* without raising."""

    def _report(count: int) -> None:
        try:
            health.set_skipped_ticks(count)
        except OSError:
            logger.warning("Failed to write health file", exc_info=True)

    return _report


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run the scheduler.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from pydantic import ValidationError

    from collector.src.auth import TokenCache
    from collector.src.client import SiteIdentifiers, TelemetryClient, create_http_client
    from collector.src.config import CollectorSettings
    from collector.src.db.session import create_engine, create_session_factory, init_schema
    from collector.src.health import HealthWriter
    from collector.src.recorder import Recorder
    from collector.src.scheduler import CycleScheduler

    try:
        settings = CollectorSettings()
    except ValidationError:
        logger.critical("Invalid configuration, refusing to start", exc_info=True)
        raise SystemExit(1) from None
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    engine = create_engine(settings.database_url)
    try:
        if settings.create_schema:
            await init_schema(engine)

        recorder = Recorder(create_session_factory(engine), audit_path=settings.audit_log_path)
        health = HealthWriter(settings.health_path)

        async with create_http_client(settings.base_url, timeout_s=settings.http_timeout_s) as http:
            tokens = TokenCache(
                http,
                login_url=settings.login_url,
                username=settings.api_username,
                password=settings.api_password,
                lease=timedelta(minutes=settings.token_lease_minutes),
            )
            cycle = functools.partial(
                run_cycle,
                tokens=tokens,
                client=TelemetryClient(http),
                recorder=recorder,
                site=SiteIdentifiers(sys_sn=settings.sys_sn, station_id=settings.station_id),
                central_id=settings.central_id,
                sensor_id=settings.sensor_id,
                health=health,
            )
            scheduler = CycleScheduler(
                cycle,
                interval_s=settings.fetch_interval_minutes * 60,
                shutdown_event=shutdown_event,
                run_immediately=settings.run_immediately,
                on_skip=_skip_reporter(health),
            )
            await scheduler.run()
    finally:
        await engine.dispose()

    logger.info("Shutdown complete")


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the collector daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
