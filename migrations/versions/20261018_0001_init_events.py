"""init events

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    status_enum = sa.Enum("enabled", "disabled", "deleted", name="event_status")
    periodicity_enum = sa.Enum("hourly", "daily", "weekly", "weekdays", name="event_periodicity")

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("text", sa.String(length=200), nullable=False),
        sa.Column("fire_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", status_enum, nullable=False, server_default="enabled"),
        sa.Column("periodicity", periodicity_enum, nullable=True),
        sa.Column("weekdays", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_events_chat_id", "events", ["chat_id"])
    op.create_index("ix_events_fire_at", "events", ["fire_at"])
    op.create_index("ix_events_status_fire_at", "events", ["status", "fire_at"])


def downgrade() -> None:
    op.drop_index("ix_events_status_fire_at", table_name="events")
    op.drop_index("ix_events_fire_at", table_name="events")
    op.drop_index("ix_events_chat_id", table_name="events")
    op.drop_table("events")
    sa.Enum("hourly", "daily", "weekly", "weekdays", name="event_periodicity").drop(op.get_bind(), checkfirst=True)
    sa.Enum("enabled", "disabled", "deleted", name="event_status").drop(op.get_bind(), checkfirst=True)
