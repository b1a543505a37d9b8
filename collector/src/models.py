"""
Pydantic models for API payloads and the normalized telemetry record.

The monitoring API wraps every response in an envelope
``{"code": ..., "msg": ..., "data": {...}}``. The three report endpoints
return differently shaped ``data`` objects whose key casing is not consistent
(``epvtoday`` vs ``efeedIn`` vs ``ehomeLoad``), so every API model matches
keys case-insensitively, ignores unknown keys, and treats ``null`` as
"use the default". A missing optional field therefore never fails decoding.

CHANGELOG:
- 2025-03-16: Flags are set only for the value 1
- 2025-03-09: Decode the full statistics shape, not only the merged fields
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Decoding helpers
# ---------------------------------------------------------------------------


def _coerce_flag(value: Any) -> Any:
    """Turn the API's 0/1 (or "0"/"1") flags into booleans.

    A flag is set only when it equals 1; any other number is False. Other
    strings are returned unchanged so pydantic's own bool parsing accepts
    "true"/"false" and reports anything else as invalid.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value == 1
    if isinstance(value, str) and value.strip() in ("0", "1"):
        return value.strip() == "1"
    return value


class ApiModel(BaseModel):
    """Base for all models decoded from the monitoring API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @classmethod
    def _accepted_keys(cls) -> dict[str, str]:
        """Map lower-cased field names and aliases to the key pydantic expects."""
        keys: dict[str, str] = {}
        for name, info in cls.model_fields.items():
            keys[name.lower()] = name
            alias = info.validation_alias or info.alias
            if isinstance(alias, AliasChoices):
                choices = [c for c in alias.choices if isinstance(c, str)]
            elif isinstance(alias, str):
                choices = [alias]
            else:
                choices = []
            for choice in choices:
                keys[choice.lower()] = choice
        return keys

    @model_validator(mode="before")
    @classmethod
    def _fold_keys(cls, data: Any) -> Any:
        """Match incoming keys case-insensitively and drop nulls and unknowns."""
        if not isinstance(data, dict):
            return data
        accepted = cls._accepted_keys()
        folded: dict[str, Any] = {}
        for key, value in data.items():
            if value is None:
                continue
            target = accepted.get(str(key).lower())
            if target is not None:
                folded[target] = value
        return folded


# ---------------------------------------------------------------------------
# Envelope and login
# ---------------------------------------------------------------------------

DataT = TypeVar("DataT")


class ApiEnvelope(ApiModel, Generic[DataT]):
    """Common ``{code, msg, data}`` wrapper of every API response.

    The report endpoints use ``msg``; some deployments answer with
    ``message``. Both are accepted.
    """

    code: int = 0
    msg: str = Field("", validation_alias=AliasChoices("msg", "message"))
    data: DataT | None = None


class AuthData(ApiModel):
    """``data`` object of the login response."""

    token: str = ""
    refresh_token: str = Field("", alias="refreshToken")


# ---------------------------------------------------------------------------
# Report payloads
# ---------------------------------------------------------------------------


class LivePayload(ApiModel):
    """Instantaneous readings from ``getLastPowerData`` (watts, SOC in %)."""

    ppv: float = 0.0
    pload: float = 0.0
    soc: float = 0.0
    pgrid: float = 0.0
    pbat: float = 0.0
    pev: float = 0.0
    has_charging_pile: bool | None = Field(None, alias="hasChargingPile")

    @field_validator("has_charging_pile", mode="before")
    @classmethod
    def _flag_to_bool(cls, v: Any) -> Any:
        return _coerce_flag(v)


class DailyPayload(ApiModel):
    """Same-day energy totals in kWh from ``staticsByDay``.

    The intraday arrays are decoded so that malformed series still surface
    as decode errors, but nothing downstream reads them.
    """

    epv_today: float = Field(0.0, alias="epvtoday")
    efeed_in: float = Field(0.0, alias="efeedIn")
    ehome_load: float = Field(0.0, alias="ehomeload")
    echarge: float = 0.0
    ebat: float = 0.0
    egrid_charge: float = Field(0.0, alias="egridCharge")
    einput: float = 0.0
    eload_raw: float = Field(0.0, alias="eloadRaw")
    echarging_pile: float = Field(0.0, alias="echargingpile")
    ediesel: float = 0.0

    cbat: list[float | None] = Field(default_factory=list)
    home_power: list[float | None] = Field(default_factory=list, alias="homePower")
    feed_in: list[float | None] = Field(default_factory=list, alias="feedIn")
    grid_charge: list[float | None] = Field(default_factory=list, alias="gridCharge")
    ppv: list[float | None] = Field(default_factory=list)


class StatsPayload(ApiModel):
    """Energy statistics for one day from ``getEnergyStatistics``.

    Only self-consumption, self-sufficiency, discharge and the generator
    flag feed the normalized record; the remaining fields mirror the full
    response shape.
    """

    epv_t: float = Field(0.0, alias="epvT")
    eout: float = 0.0
    echarge: float = 0.0
    epv2load: float = 0.0
    epvcharge: float = 0.0
    eeff: float = 0.0
    eload: float = 0.0
    eself_consumption: float = Field(0.0, alias="eselfConsumption")
    eself_sufficiency: float = Field(0.0, alias="eselfSufficiency")
    einput: float = 0.0
    ebat: float = 0.0
    eload_percentage: float = Field(0.0, alias="eloadPercentage")
    soc: float = 0.0
    has_generator: bool = Field(False, alias="hasGenerator")
    has_charging_pile: bool = Field(False, alias="hasChargingPile")
    eload_raw: float = Field(0.0, alias="eloadRaw")
    epv2load_raw: float | None = Field(None, alias="epv2loadRaw")
    egrid_discharge: float = Field(0.0, alias="egriddischarge")
    edischarge: float = 0.0
    bat_load: float = Field(0.0, alias="batLoad")
    echarging_pile: float = Field(0.0, alias="echargingPile")
    egrid_charge: float = Field(0.0, alias="egridCharge")
    echarging_pile_raw: float = Field(0.0, alias="echargingPileRaw")
    ehome_load: float = Field(0.0, alias="ehomeLoad")
    egrid2load: float = Field(0.0, alias="egrid2Load")
    ediesel: float = 0.0

    @field_validator("has_generator", "has_charging_pile", mode="before")
    @classmethod
    def _flags_to_bool(cls, v: Any) -> Any:
        """The API reports these flags as 0/1 integers."""
        return _coerce_flag(v)


# ---------------------------------------------------------------------------
# Normalized record
# ---------------------------------------------------------------------------


class NormalizedRecord(BaseModel):
    """One merged telemetry snapshot for the site.

    Power values are in kW, energy values in kWh, ``battery_soc`` and
    ``eself_sufficiency`` in percent. Field order after ``timestamp`` is the
    column order of the ``site_telemetry`` table.

    Attributes:
        central_id: Site identifier (from configuration).
        timestamp: UTC time the record was assembled (injected).
        generation: Instant PV power.
        consumption: Instant home load.
        battery_soc: Battery state of charge.
        grid_consumption: Instant grid exchange.
        battery_power: Instant battery power.
        epv_today: PV energy generated today.
        efeed_in: Energy exported to the grid today.
        ehome_load: Home consumption today.
        echarge: Energy charged into the battery today.
        ebat: Battery throughput today.
        egrid_charge: Battery energy charged from the grid today.
        einput: Grid import today.
        eload_raw: Raw home load today.
        echarging_pile: EV charging pile usage today.
        ediesel: Diesel generator energy today.
        eself_consumption: Self-consumed energy.
        eself_sufficiency: Self-sufficiency.
        edischarge: Energy discharged from the battery.
        has_generator: A backup generator ran during the day.
        has_charging_pile: An EV charging pile is installed.
    """

    central_id: str
    timestamp: datetime

    generation: float = 0.0
    consumption: float = 0.0
    battery_soc: float = 0.0
    grid_consumption: float = 0.0
    battery_power: float = 0.0

    epv_today: float = 0.0
    efeed_in: float = 0.0
    ehome_load: float = 0.0
    echarge: float = 0.0
    ebat: float = 0.0
    egrid_charge: float = 0.0
    einput: float = 0.0
    eload_raw: float = 0.0
    echarging_pile: float = 0.0
    ediesel: float = 0.0

    eself_consumption: float = 0.0
    eself_sufficiency: float = 0.0
    edischarge: float = 0.0

    has_generator: bool = False
    has_charging_pile: bool = False
