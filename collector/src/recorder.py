"""
Idempotent persistence of normalized records, plus the anomaly audit file.

Every record is stored under the key (sensor_id, time_bucket), where the
time bucket is the number of whole hours between the record's UTC timestamp
and 2019-01-01T00:00:00Z. Insertion uses
``INSERT ... ON CONFLICT (sensor_id, time_bucket) DO NOTHING``, so a second
cycle inside the same hour is a silent no-op rather than an error or a
duplicate row.

The insert reports a WriteOutcome. Every outcome is logged at info level
with the sensor id; anomalous outcomes (a row for the bucket already existed)
are also appended to a plain-text audit file. Writing that file is
best-effort and never fails the cycle.

CHANGELOG:
- 2025-03-09: Replace the stored-routine call with a direct conditional insert
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import IntEnum
from pathlib import Path
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collector.src.db.models import SiteTelemetry
from collector.src.errors import AuditWriteError, PersistenceError
from collector.src.models import NormalizedRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Time buckets
# ---------------------------------------------------------------------------

BUCKET_EPOCH = datetime(2019, 1, 1, tzinfo=UTC)
"""Origin of the hourly time bucket index."""

BUCKET_WIDTH = timedelta(hours=1)


def _as_utc(ts: datetime) -> datetime:
    """Return *ts* in UTC; naive datetimes are taken to be UTC already."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def time_bucket(ts: datetime) -> int:
    """Return the whole number of hours between the epoch and *ts* (floored).

    Args:
        ts: Record timestamp. Naive values are interpreted as UTC.

    Returns:
        Hour index since 2019-01-01T00:00:00Z. Negative before the epoch.
    """
    return (_as_utc(ts) - BUCKET_EPOCH) // BUCKET_WIDTH


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class WriteOutcome(IntEnum):
    """Result of one persist call."""

    INSERTED = 0
    """A new row was written."""

    DUPLICATE = 1
    """A row for (sensor_id, time_bucket) already existed; nothing written."""


AUDITED_OUTCOMES: frozenset[WriteOutcome] = frozenset({WriteOutcome.DUPLICATE})
"""Outcomes that also produce a line in the audit file."""


_INSERT_BUILDERS: dict[str, Callable[..., Any]] = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}
"""Dialect name -> INSERT construct that supports ON CONFLICT DO NOTHING."""


# ---------------------------------------------------------------------------
# Recorder
# ---------------------------------------------------------------------------


class Recorder:
    """Writes normalized records to the store and keeps the audit file.

    Args:
        session_factory: Async session factory; one session is opened per
            :meth:`persist` call.
        audit_path: Text file that receives one line per anomalous outcome.
            Accepts ``str`` or ``pathlib.Path``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        audit_path: str | Path,
    ) -> None:
        self._session_factory = session_factory
        self.audit_path = Path(audit_path)

    async def persist(
        self,
        record: NormalizedRecord,
        sensor_id: int,
        *,
        now: datetime,
    ) -> WriteOutcome:
        """Insert *record* for *sensor_id* unless its hour is already stored.

        Args:
            record: The merged telemetry record.
            sensor_id: Sensor identifier (first half of the key).
            now: Current UTC time, used for the audit line.

        Returns:
            The :class:`WriteOutcome` of the insert.

        Raises:
            PersistenceError: If the store is unreachable or rejects the
                statement.
        """
        row = _to_row(record, sensor_id)

        try:
            async with self._session_factory() as session:
                dialect = session.get_bind().dialect.name
                build_insert = _INSERT_BUILDERS.get(dialect)
                if build_insert is None:
                    raise PersistenceError(f"Unsupported database dialect '{dialect}'")
                stmt = (
                    build_insert(SiteTelemetry)
                    .values(row)
                    .on_conflict_do_nothing(index_elements=["sensor_id", "time_bucket"])
                )
                result = await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError(f"Insert for sensor {sensor_id} failed: {exc}") from exc

        outcome = WriteOutcome.INSERTED if result.rowcount else WriteOutcome.DUPLICATE
        logger.info(
            "site_telemetry insert returned %d (%s) for sensor %s, bucket %d",
            outcome,
            outcome.name,
            sensor_id,
            row["time_bucket"],
        )

        if outcome in AUDITED_OUTCOMES:
            self.audit(outcome, sensor_id, now=now)
        return outcome

    def audit(self, outcome: WriteOutcome, sensor_id: int, *, now: datetime) -> None:
        """Append an audit line for *outcome*; failures are logged only."""
        line = (
            f"{_as_utc(now).isoformat()} - site_telemetry insert returned "
            f"{int(outcome)} ({outcome.name}) for sensor {sensor_id}\n"
        )
        try:
            self._append(line)
        except AuditWriteError:
            logger.error("Failed to write insert outcome to audit file", exc_info=True)

    def _append(self, line: str) -> None:
        try:
            with self.audit_path.open("a", encoding="utf-8") as fh:
                fh.write(line)
        except OSError as exc:
            raise AuditWriteError(f"Cannot append to {self.audit_path}") from exc


def _to_row(record: NormalizedRecord, sensor_id: int) -> dict[str, Any]:
    """Flatten *record* into a ``site_telemetry`` column dict."""
    ts = _as_utc(record.timestamp)
    row: dict[str, Any] = {"sensor_id": sensor_id, "ts": ts}
    row.update(record.model_dump(exclude={"central_id", "timestamp"}))
    row["time_bucket"] = time_bucket(ts)
    return row
