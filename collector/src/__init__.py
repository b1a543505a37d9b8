"""
Site telemetry collector package.

Polls the cloud energy-monitoring API for one solar + battery site, merges
the live, daily and statistics payloads into a single record, and stores it
idempotently in PostgreSQL (one row per sensor per hour).

CHANGELOG:
- 2025-03-02: Initial creation

TODO:
- None
"""
