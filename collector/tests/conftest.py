"""
Shared test fixtures for collector tests.

Provides environment variable fixtures for CollectorSettings tests, canned
API payloads matching the monitoring API's response shapes, and a SQLite
(aiosqlite) store with the telemetry schema for real insert tests.
All collector env vars are cleaned before each test to ensure isolation.

CHANGELOG:
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from collector.src.db.session import create_engine, create_session_factory, init_schema

# All CollectorSettings environment variable names, used for cleanup.
_ALL_COLLECTOR_ENV_VARS = (
    "BASE_URL",
    "LOGIN_URL",
    "API_USERNAME",
    "API_PASSWORD",
    "SYS_SN",
    "STATION_ID",
    "CENTRAL_ID",
    "SENSOR_ID",
    "FETCH_INTERVAL_MINUTES",
    "DATABASE_URL",
    "AUDIT_LOG_PATH",
    "HEALTH_PATH",
    "HTTP_TIMEOUT_S",
    "TOKEN_LEASE_MINUTES",
    "RUN_IMMEDIATELY",
    "CREATE_SCHEMA",
)


@pytest.fixture(autouse=True)
def _clean_collector_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all collector env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_COLLECTOR_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required and optional environment variables for CollectorSettings."""
    env = {
        "BASE_URL": "https://openapi.example.com/",
        "LOGIN_URL": "https://openapi.example.com/api/usercenter/login",
        "API_USERNAME": "site-operator",
        "API_PASSWORD": "s3cret-pass",
        "SYS_SN": "AL2002321010043",
        "STATION_ID": "st-77",
        "CENTRAL_ID": "998877",
        "SENSOR_ID": "42",
        "FETCH_INTERVAL_MINUTES": "5",
        "DATABASE_URL": "postgresql+asyncpg://edison:pw@db.local/edison",
        "AUDIT_LOG_PATH": "/tmp/audit.log",
        "HEALTH_PATH": "/tmp/health.json",
        "HTTP_TIMEOUT_S": "30",
        "TOKEN_LEASE_MINUTES": "45",
        "RUN_IMMEDIATELY": "false",
        "CREATE_SCHEMA": "true",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones)."""
    env = {
        "BASE_URL": "https://openapi.example.com",
        "LOGIN_URL": "https://openapi.example.com/api/usercenter/login",
        "API_USERNAME": "site-operator",
        "API_PASSWORD": "s3cret-pass",
        "SYS_SN": "AL2002321010043",
        "SENSOR_ID": "42",
        "DATABASE_URL": "sqlite+aiosqlite:///telemetry.db",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


# ---------------------------------------------------------------------------
# Canned API payloads
# ---------------------------------------------------------------------------


@pytest.fixture()
def live_data() -> dict[str, Any]:
    """``data`` object of a getLastPowerData response."""
    return {
        "ppv": 1500,
        "pload": 820.0,
        "soc": 64.5,
        "pgrid": -250.0,
        "pbat": 430.0,
        "pev": 0,
        "hasChargingPile": True,
        "ppvDetail": {"ppv1": 800, "ppv2": 700},
    }


@pytest.fixture()
def daily_data() -> dict[str, Any]:
    """``data`` object of a staticsByDay response (note the mixed key casing)."""
    return {
        "epvtoday": 12.4,
        "efeedIn": 3.1,
        "ehomeload": 9.8,
        "echarge": 4.2,
        "ebat": 3.9,
        "egridCharge": 0.5,
        "einput": 1.7,
        "eloadRaw": 9.9,
        "echargingpile": 0.0,
        "ediesel": 0.0,
        "cbat": [50.0, 51.5, None],
        "homePower": [0.4, 0.5],
        "feedIn": [],
        "gridCharge": [0.0],
        "ppv": [0.0, 1.2],
    }


@pytest.fixture()
def stats_data() -> dict[str, Any]:
    """``data`` object of a getEnergyStatistics response."""
    return {
        "epvT": 12.4,
        "eout": 3.1,
        "eselfConsumption": 9.3,
        "eselfSufficiency": 82.6,
        "edischarge": 2.8,
        "hasGenerator": 1,
        "ehomeLoad": 9.8,
        "egrid2Load": 1.7,
    }


def envelope(data: Any, *, code: int = 200, msg: str = "Success") -> dict[str, Any]:
    """Wrap *data* in the API's ``{code, msg, data}`` envelope."""
    return {"code": code, "msg": msg, "data": data}


@pytest.fixture()
def wrap() -> Any:
    """Expose :func:`envelope` to tests as a fixture."""
    return envelope


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def sqlite_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with the site_telemetry table created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'telemetry.db'}")
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(sqlite_engine)
