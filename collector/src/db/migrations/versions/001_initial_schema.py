"""
Initial schema: create the site_telemetry table.

Creates site_telemetry with the legacy column order (sensor id, timestamp,
18 readings, 2 flags) followed by time_bucket, and the composite primary
key (sensor_id, time_bucket) that makes repeated inserts within one hour a
no-op.

Revision ID: 001
Revises: None
Create Date: 2025-03-02

CHANGELOG:
- 2025-03-02: Initial creation

TODO:
- None
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# Revision identifiers used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_READINGS = (
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


def upgrade() -> None:
    """Create the site_telemetry table."""
    op.create_table(
        "site_telemetry",
        sa.Column("sensor_id", sa.BigInteger(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        *(sa.Column(name, sa.Double(), nullable=False) for name in _READINGS),
        sa.Column("has_generator", sa.Boolean(), nullable=False),
        sa.Column("has_charging_pile", sa.Boolean(), nullable=False),
        sa.Column("time_bucket", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("sensor_id", "time_bucket"),
    )


def downgrade() -> None:
    """Drop site_telemetry table."""
    op.drop_table("site_telemetry")
