"""
Health file writer for the collector.

Writes a JSON health file at a configurable path with four fields:
- last_cycle_ts: ISO timestamp of the most recent cycle attempt.
- last_success_ts: ISO timestamp of the most recent cycle that stored data.
- consecutive_failures: Failed cycles since the last success.
- skipped_ticks: Ticks dropped because a cycle was still running.

The file is rewritten on every state change, providing a simple liveness
signal that a Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes collector health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_cycle_ts: str | None = None
        self._last_success_ts: str | None = None
        self._consecutive_failures: int = 0
        self._skipped_ticks: int = 0

    def record_cycle(self, *, success: bool) -> None:
        """Record the end of a cycle attempt and write health file."""
        now = datetime.now(tz=UTC).isoformat()
        self._last_cycle_ts = now
        if success:
            self._last_success_ts = now
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1
        self._write()

    def set_skipped_ticks(self, count: int) -> None:
        """Update the skipped tick counter and write health file."""
        self._skipped_ticks = count
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_cycle_ts": self._last_cycle_ts,
            "last_success_ts": self._last_success_ts,
            "consecutive_failures": self._consecutive_failures,
            "skipped_ticks": self._skipped_ticks,
        }
        self.path.write_text(json.dumps(data))
