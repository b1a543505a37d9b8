"""
Collector configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded URLs, credentials or site identifiers.

CHANGELOG:
- 2025-03-02: Initial creation

TODO:
- None
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class CollectorSettings(BaseSettings):
    """Collector configuration for one monitored site.

    All values are loaded from environment variables. Required variables
    must be set; optional variables have sensible defaults.

    Attributes:
        base_url: Base URL of the monitoring API (the three report
            endpoints are resolved relative to it).
        login_url: Absolute URL of the login endpoint.
        api_username: API account user name.
        api_password: API account password.
        sys_sn: Serial number of the site's inverter system.
        station_id: Station identifier for the live power endpoint.
        central_id: Site identifier embedded in every normalized record.
        sensor_id: Sensor identifier used as the first half of the
            idempotency key in the store.
        fetch_interval_minutes: Minutes between scheduler ticks.
        database_url: SQLAlchemy async URL (``postgresql+asyncpg://...``).
        audit_log_path: Text file receiving one line per anomalous write.
        health_path: JSON health file rewritten after every cycle.
        http_timeout_s: Overall timeout for each HTTP request.
        token_lease_minutes: Assumed lifetime of a login token.
        run_immediately: Fire the first tick at startup instead of after
            one interval.
        create_schema: Create the telemetry table at startup when missing.
    """

    base_url: str
    login_url: str
    api_username: str
    api_password: str
    sys_sn: str
    station_id: str = ""
    central_id: str = "123456"
    sensor_id: int
    fetch_interval_minutes: int = 10
    database_url: str
    audit_log_path: str = "/data/insert_audit.log"
    health_path: str = "/data/health.json"
    http_timeout_s: float = 100.0
    token_lease_minutes: int = 60
    run_immediately: bool = True
    create_schema: bool = False

    @field_validator("base_url", "login_url")
    @classmethod
    def url_must_be_http(cls, v: str) -> str:
        """Validate that API URLs carry an http(s) scheme."""
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError(f"API URLs must start with http:// or https:// (got: '{v[:20]}...')")
        return v

    @field_validator("fetch_interval_minutes")
    @classmethod
    def fetch_interval_must_be_positive(cls, v: int) -> int:
        """Validate fetch interval is at least one minute."""
        if v < 1:
            raise ValueError("FETCH_INTERVAL_MINUTES must be >= 1")
        return v

    @field_validator("token_lease_minutes")
    @classmethod
    def token_lease_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("TOKEN_LEASE_MINUTES must be >= 1")
        return v

    @field_validator("http_timeout_s")
    @classmethod
    def http_timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("HTTP_TIMEOUT_S must be > 0")
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
