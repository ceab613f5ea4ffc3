"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

DELIVERY_SLOTS = ("MORNING", "EVENING")
DELIVERY_STATUSES = ("RESERVED", "SENT", "FAILED")
CONVERSATION_STEPS = (
    "IDLE",
    "WAITING_LOCATION",
    "WAITING_MORNING_TIME",
    "WAITING_EVENING_TIME",
    "WAITING_UPDATE_MORNING_TIME",
    "WAITING_UPDATE_EVENING_TIME",
)


def upgrade() -> None:
    # Subscribers
    op.create_table(
        "subscribers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("telegram_user_id", sa.String(32), nullable=False),
        sa.Column("telegram_chat_id", sa.String(32), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("morning_time", sa.String(5), nullable=True),
        sa.Column("evening_time", sa.String(5), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lon", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_subscribers_telegram_user_id", "subscribers", ["telegram_user_id"], unique=True
    )
    op.create_index("ix_subscribers_is_active", "subscribers", ["is_active"])

    # Conversation states
    op.create_table(
        "conversation_states",
        sa.Column("telegram_user_id", sa.String(32), nullable=False),
        sa.Column(
            "step",
            sa.Enum(*CONVERSATION_STEPS, name="conversation_step", native_enum=False, length=40),
            nullable=False,
            server_default="IDLE",
        ),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("telegram_user_id"),
    )

    # Delivery ledger
    op.create_table(
        "delivery_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("subscriber_id", sa.Uuid(), nullable=False),
        sa.Column(
            "slot",
            sa.Enum(*DELIVERY_SLOTS, name="delivery_slot", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*DELIVERY_STATUSES, name="delivery_status", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("dedupe_key", sa.String(128), nullable=False),
        sa.ForeignKeyConstraint(["subscriber_id"], ["subscribers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedupe_key", name="uq_delivery_logs_dedupe_key"),
    )
    op.create_index("ix_delivery_logs_subscriber_id", "delivery_logs", ["subscriber_id"])
    op.create_index("ix_delivery_logs_target_date", "delivery_logs", ["target_date"])
    op.create_index("ix_delivery_logs_status", "delivery_logs", ["status"])

    # Scheduler job history
    op.create_table(
        "job_runs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("job_id", sa.String(100), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=False),
        sa.Column("outcome", sa.String(32), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_runs_job_id", "job_runs", ["job_id"])


def downgrade() -> None:
    op.drop_index("ix_job_runs_job_id", table_name="job_runs")
    op.drop_table("job_runs")

    op.drop_index("ix_delivery_logs_status", table_name="delivery_logs")
    op.drop_index("ix_delivery_logs_target_date", table_name="delivery_logs")
    op.drop_index("ix_delivery_logs_subscriber_id", table_name="delivery_logs")
    op.drop_table("delivery_logs")

    op.drop_table("conversation_states")

    op.drop_index("ix_subscribers_is_active", table_name="subscribers")
    op.drop_index("ix_subscribers_telegram_user_id", table_name="subscribers")
    op.drop_table("subscribers")
