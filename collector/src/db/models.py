"""
SQLAlchemy ORM models for the telemetry store.

Defines the SiteTelemetry model: one row per sensor per hour. The composite
primary key (sensor_id, time_bucket) is the idempotency key, so repeated or
overlapping cycles inside the same hour never produce a second row.

Column order mirrors the parameter order of the legacy
``fn_t_data_fv_ex_ins_upd`` routine (sensor id, timestamp, 18 readings,
2 flags) with ``time_bucket`` appended, so exports line up with the old data.

CHANGELOG:
- 2025-03-02: Initial creation

TODO:
- None
"""

import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Double, Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all collector ORM models."""

    pass


READING_COLUMNS: tuple[str, ...] = (
    "generation",
    "consumption",
    "battery_soc",
    "grid_consumption",
    "battery_power",
    "epv_today",
    "efeed_in",
    "ehome_load",
    "echarge",
    "ebat",
    "egrid_charge",
    "einput",
    "eload_raw",
    "echarging_pile",
    "ediesel",
    "eself_consumption",
    "eself_sufficiency",
    "edischarge",
)
"""The 18 numeric reading columns, in storage order."""

FLAG_COLUMNS: tuple[str, ...] = ("has_generator", "has_charging_pile")


class SiteTelemetry(Base):
    """One hourly telemetry snapshot for a sensor.

    Attributes:
        sensor_id: Configured sensor identifier.
        ts: UTC time the record was assembled (first write in the hour wins).
        generation .. edischarge: Readings, see NormalizedRecord.
        has_generator: Backup generator ran during the day.
        has_charging_pile: EV charging pile installed.
        time_bucket: Whole hours since 2019-01-01T00:00:00Z.
    """

    __tablename__ = "site_telemetry"

    sensor_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, nullable=False)
    ts: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    generation: Mapped[float] = mapped_column(Double, nullable=False)
    consumption: Mapped[float] = mapped_column(Double, nullable=False)
    battery_soc: Mapped[float] = mapped_column(Double, nullable=False)
    grid_consumption: Mapped[float] = mapped_column(Double, nullable=False)
    battery_power: Mapped[float] = mapped_column(Double, nullable=False)
    epv_today: Mapped[float] = mapped_column(Double, nullable=False)
    efeed_in: Mapped[float] = mapped_column(Double, nullable=False)
    ehome_load: Mapped[float] = mapped_column(Double, nullable=False)
    echarge: Mapped[float] = mapped_column(Double, nullable=False)
    ebat: Mapped[float] = mapped_column(Double, nullable=False)
    egrid_charge: Mapped[float] = mapped_column(Double, nullable=False)
    einput: Mapped[float] = mapped_column(Double, nullable=False)
    eload_raw: Mapped[float] = mapped_column(Double, nullable=False)
    echarging_pile: Mapped[float] = mapped_column(Double, nullable=False)
    ediesel: Mapped[float] = mapped_column(Double, nullable=False)
    eself_consumption: Mapped[float] = mapped_column(Double, nullable=False)
    eself_sufficiency: Mapped[float] = mapped_column(Double, nullable=False)
    edischarge: Mapped[float] = mapped_column(Double, nullable=False)

    has_generator: Mapped[bool] = mapped_column(Boolean, nullable=False)
    has_charging_pile: Mapped[bool] = mapped_column(Boolean, nullable=False)

    time_bucket: Mapped[int] = mapped_column(Integer, primary_key=True, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of the SiteTelemetry row."""
        return (
            f"SiteTelemetry(sensor_id={self.sensor_id!r}, "
            f"time_bucket={self.time_bucket!r}, generation={self.generation!r})"
        )
