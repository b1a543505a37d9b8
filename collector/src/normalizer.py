"""
Pure normalizer that merges the three API payloads into a NormalizedRecord.

Power readings from the live payload arrive in watts and are converted to
kilowatts; the state of charge is already a percentage and the daily and
statistics values are already kWh, so they pass through unchanged.

This is a pure function: no side effects, no I/O, no clock. The central id
and timestamp are accepted as parameters so they can be injected by the
caller. Any payload may be ``None`` (the endpoint answered without data);
every field it would have provided is then zero / False.

CHANGELOG:
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

from datetime import datetime

from collector.src.models import DailyPayload, LivePayload, NormalizedRecord, StatsPayload

WATTS_PER_KILOWATT: float = 1000.0


def _kw(watts: float) -> float:
    """Convert watts to kilowatts."""
    return watts / WATTS_PER_KILOWATT


def merge(
    live: LivePayload | None,
    daily: DailyPayload | None,
    stats: StatsPayload | None,
    *,
    central_id: str,
    ts: datetime,
) -> NormalizedRecord:
    """Merge live, daily and statistics payloads into one record.

    Args:
        live: Decoded ``getLastPowerData`` payload, or ``None``.
        daily: Decoded ``staticsByDay`` payload, or ``None``.
        stats: Decoded ``getEnergyStatistics`` payload, or ``None``.
        central_id: Site identifier to embed in the record.
        ts: Timestamp to embed in the record (UTC).

    Returns:
        A fully populated :class:`NormalizedRecord`.
    """
    live = live or LivePayload()
    daily = daily or DailyPayload()
    stats = stats or StatsPayload()

    return NormalizedRecord(
        central_id=central_id,
        timestamp=ts,
        generation=_kw(live.ppv),
        consumption=_kw(live.pload),
        battery_soc=live.soc,
        grid_consumption=_kw(live.pgrid),
        battery_power=_kw(live.pbat),
        epv_today=daily.epv_today,
        efeed_in=daily.efeed_in,
        ehome_load=daily.ehome_load,
        echarge=daily.echarge,
        ebat=daily.ebat,
        egrid_charge=daily.egrid_charge,
        einput=daily.einput,
        eload_raw=daily.eload_raw,
        echarging_pile=daily.echarging_pile,
        ediesel=daily.ediesel,
        eself_consumption=stats.eself_consumption,
        eself_sufficiency=stats.eself_sufficiency,
        edischarge=stats.edischarge,
        has_generator=stats.has_generator,
        has_charging_pile=bool(live.has_charging_pile),
    )
