"""
Unit tests for the recorder (time buckets, idempotent insert, audit file).

Insert tests run against a real SQLite store (aiosqlite) created with the
ORM schema, so the ON CONFLICT DO NOTHING statement is exercised for real.

Tests verify:
- time_bucket() counts whole UTC hours since 2019-01-01 and is monotonic.
- A first insert for (sensor, hour) stores one row and reports INSERTED.
- A second insert within the same hour stores nothing and reports DUPLICATE.
- Different hours and different sensors get their own rows.
- DUPLICATE outcomes append one audit line ending with the sensor id.
- Audit write failures are logged and never raised.
- Store failures raise PersistenceError.

CHANGELOG:
- 2025-03-09: Cover the direct conditional insert
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest
from collector.src.db.models import SiteTelemetry
from collector.src.db.session import create_engine, create_session_factory
from collector.src.errors import PersistenceError
from collector.src.models import NormalizedRecord
from collector.src.recorder import BUCKET_EPOCH, Recorder, WriteOutcome, time_bucket
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

T0 = datetime(2025, 3, 2, 10, 15, 0, tzinfo=UTC)


def _make_record(ts: datetime = T0, generation: float = 1.5) -> NormalizedRecord:
    return NormalizedRecord(
        central_id="123456",
        timestamp=ts,
        generation=generation,
        consumption=0.82,
        battery_soc=64.5,
        epv_today=12.4,
        eself_sufficiency=82.6,
        has_generator=True,
    )


async def _rows(factory: async_sessionmaker[AsyncSession]) -> list[SiteTelemetry]:
    async with factory() as session:
        result = await session.execute(select(SiteTelemetry).order_by(SiteTelemetry.sensor_id, SiteTelemetry.time_bucket))
        return list(result.scalars().all())


async def _count(factory: async_sessionmaker[AsyncSession]) -> int:
    async with factory() as session:
        return (await session.execute(select(func.count()).select_from(SiteTelemetry))).scalar_one()


# ---------------------------------------------------------------------------
# time_bucket
# ---------------------------------------------------------------------------


class TestTimeBucket:
    """Hour index since 2019-01-01T00:00:00Z."""

    def test_epoch_is_zero(self) -> None:
        assert time_bucket(BUCKET_EPOCH) == 0

    def test_floors_within_hour(self) -> None:
        assert time_bucket(datetime(2019, 1, 1, 0, 59, 59, tzinfo=UTC)) == 0
        assert time_bucket(datetime(2019, 1, 1, 1, 0, 0, tzinfo=UTC)) == 1

    def test_one_day_later(self) -> None:
        assert time_bucket(datetime(2019, 1, 2, tzinfo=UTC)) == 24

    def test_known_value(self) -> None:
        # 2252 days (two leap years) plus 10 hours
        assert time_bucket(T0) == 54058

    def test_before_epoch_is_negative(self) -> None:
        assert time_bucket(datetime(2018, 12, 31, 23, 59, tzinfo=UTC)) == -1

    def test_naive_treated_as_utc(self) -> None:
        assert time_bucket(datetime(2025, 3, 2, 10, 15)) == time_bucket(T0)

    def test_offset_converted_to_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))

        assert time_bucket(datetime(2025, 3, 2, 12, 15, tzinfo=plus_two)) == time_bucket(T0)

    def test_monotonic_non_decreasing(self) -> None:
        stamps = [T0 + timedelta(minutes=7 * i) for i in range(40)]
        buckets = [time_bucket(ts) for ts in stamps]

        assert buckets == sorted(buckets)


# ---------------------------------------------------------------------------
# persist
# ---------------------------------------------------------------------------


class TestRecorderPersist:
    """Idempotent insert keyed by (sensor_id, time_bucket)."""

    @pytest.mark.asyncio
    async def test_first_insert_stores_row(
        self, session_factory: async_sessionmaker[AsyncSession], tmp_path: Path
    ) -> None:
        recorder = Recorder(session_factory, audit_path=tmp_path / "audit.log")

        outcome = await recorder.persist(_make_record(), 42, now=T0)

        assert outcome is WriteOutcome.INSERTED
        rows = await _rows(session_factory)
        assert len(rows) == 1
        row = rows[0]
        assert row.sensor_id == 42
        assert row.time_bucket == 54058
        assert row.generation == 1.5
        assert row.battery_soc == 64.5
        assert row.eself_sufficiency == 82.6
        assert row.has_generator is True
        assert row.has_charging_pile is False

    @pytest.mark.asyncio
    async def test_same_hour_twice_is_duplicate(
        self, session_factory: async_sessionmaker[AsyncSession], tmp_path: Path
    ) -> None:
        recorder = Recorder(session_factory, audit_path=tmp_path / "audit.log")

        first = await recorder.persist(_make_record(generation=1.5), 42, now=T0)
        later = T0 + timedelta(minutes=30)
        second = await recorder.persist(_make_record(ts=later, generation=2.0), 42, now=later)

        assert first is WriteOutcome.INSERTED
        assert second is WriteOutcome.DUPLICATE
        rows = await _rows(session_factory)
        assert len(rows) == 1
        assert rows[0].generation == 1.5

    @pytest.mark.asyncio
    async def test_next_hour_gets_new_row(
        self, session_factory: async_sessionmaker[AsyncSession], tmp_path: Path
    ) -> None:
        recorder = Recorder(session_factory, audit_path=tmp_path / "audit.log")
        next_hour = T0 + timedelta(hours=1)

        await recorder.persist(_make_record(), 42, now=T0)
        outcome = await recorder.persist(_make_record(ts=next_hour), 42, now=next_hour)

        assert outcome is WriteOutcome.INSERTED
        assert await _count(session_factory) == 2

    @pytest.mark.asyncio
    async def test_other_sensor_same_hour_gets_new_row(
        self, session_factory: async_sessionmaker[AsyncSession], tmp_path: Path
    ) -> None:
        recorder = Recorder(session_factory, audit_path=tmp_path / "audit.log")

        await recorder.persist(_make_record(), 42, now=T0)
        outcome = await recorder.persist(_make_record(), 43, now=T0)

        assert outcome is WriteOutcome.INSERTED
        assert [r.sensor_id for r in await _rows(session_factory)] == [42, 43]

    @pytest.mark.asyncio
    async def test_outcome_logged_with_sensor(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        recorder = Recorder(session_factory, audit_path=tmp_path / "audit.log")

        with caplog.at_level(logging.INFO, logger="collector.src.recorder"):
            await recorder.persist(_make_record(), 42, now=T0)

        assert "insert returned 0 (INSERTED) for sensor 42" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_table_raises_persistence_error(self, tmp_path: Path) -> None:
        engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        try:
            recorder = Recorder(create_session_factory(engine), audit_path=tmp_path / "audit.log")
            with pytest.raises(PersistenceError, match="sensor 42"):
                await recorder.persist(_make_record(), 42, now=T0)
        finally:
            await engine.dispose()


# ---------------------------------------------------------------------------
# audit file
# ---------------------------------------------------------------------------


class TestRecorderAudit:
    """Anomalous outcomes are appended to the audit file."""

    @pytest.mark.asyncio
    async def test_insert_writes_no_audit_line(
        self, session_factory: async_sessionmaker[AsyncSession], tmp_path: Path
    ) -> None:
        audit = tmp_path / "audit.log"
        recorder = Recorder(session_factory, audit_path=audit)

        await recorder.persist(_make_record(), 42, now=T0)

        assert not audit.exists()

    @pytest.mark.asyncio
    async def test_duplicate_appends_line_ending_with_sensor(
        self, session_factory: async_sessionmaker[AsyncSession], tmp_path: Path
    ) -> None:
        audit = tmp_path / "audit.log"
        recorder = Recorder(session_factory, audit_path=audit)

        await recorder.persist(_make_record(), 42, now=T0)
        await recorder.persist(_make_record(), 42, now=T0 + timedelta(minutes=10))

        lines = audit.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        assert re.match(r"^\S+ - .* 42$", lines[0])
        assert lines[0].startswith("2025-03-02T10:25:00+00:00 - ")
        assert "returned 1 (DUPLICATE)" in lines[0]

    @pytest.mark.asyncio
    async def test_audit_lines_accumulate(
        self, session_factory: async_sessionmaker[AsyncSession], tmp_path: Path
    ) -> None:
        audit = tmp_path / "audit.log"
        recorder = Recorder(session_factory, audit_path=audit)

        for minutes in (0, 10, 20):
            await recorder.persist(_make_record(), 42, now=T0 + timedelta(minutes=minutes))

        assert len(audit.read_text(encoding="utf-8").splitlines()) == 2

    @pytest.mark.asyncio
    async def test_unwritable_audit_file_is_logged_not_raised(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        # A directory cannot be opened for appending.
        recorder = Recorder(session_factory, audit_path=tmp_path)

        await recorder.persist(_make_record(), 42, now=T0)
        outcome = await recorder.persist(_make_record(), 42, now=T0)

        assert outcome is WriteOutcome.DUPLICATE
        assert "Failed to write insert outcome to audit file" in caplog.text
