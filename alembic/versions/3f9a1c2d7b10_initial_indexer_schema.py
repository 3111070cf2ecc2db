"""initial_indexer_schema

Revision ID: 3f9a1c2d7b10
Revises:
Create Date: 2026-10-19 09:12:44.201337

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create devices, midi, queue, dead_letters and system_state tables."""
    op.create_table(
        "devices",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("manufacturer", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_devices_name", "devices", ["name"], unique=True)

    # Token rows may only reference existing devices
    op.create_table(
        "midi",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("token_metadata", sa.JSON(), nullable=False),
        sa.Column("device_id", sa.Integer(), sa.ForeignKey("devices.id"), nullable=False),
        sa.Column("created_by", sa.String(length=42), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_midi_device_id", "midi", ["device_id"])

    op.create_table(
        "queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("operator", sa.String(length=42), nullable=False),
        sa.Column("error", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("attempts >= 0", name="ck_queue_attempts_non_negative"),
    )
    op.create_index("ix_queue_next_attempt_at", "queue", ["next_attempt_at"])
    op.create_index("ix_queue_created_at", "queue", ["created_at"])

    op.create_table(
        "dead_letters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("sightings", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("first_seen_at", sa.DateTime(), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_dead_letters_last_seen_at", "dead_letters", ["last_seen_at"])

    op.create_table(
        "system_state",
        sa.Column("key", sa.String(length=255), primary_key=True),
        sa.Column("state_value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    """Drop all indexer tables."""
    op.drop_table("system_state")
    op.drop_index("ix_dead_letters_last_seen_at", table_name="dead_letters")
    op.drop_table("dead_letters")
    op.drop_index("ix_queue_created_at", table_name="queue")
    op.drop_index("ix_queue_next_attempt_at", table_name="queue")
    op.drop_table("queue")
    op.drop_index("ix_midi_device_id", table_name="midi")
    op.drop_table("midi")
    op.drop_index("ix_devices_name", table_name="devices")
    op.drop_table("devices")
