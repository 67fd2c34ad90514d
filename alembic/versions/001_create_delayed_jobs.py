"""Create delayed_jobs table

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QUEUES = (
    "EMAIL_ORDER_CONFIRMATION",
    "EMAIL_SHIPPING_NOTIFICATION",
    "EMAIL_GENERAL",
)


def upgrade() -> None:
    op.create_table(
        "delayed_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=False),
        # Constrained text column, not a native enum type
        sa.Column(
            "queue",
            sa.Enum(
                *QUEUES,
                name="delayed_job_queue",
                native_enum=False,
                create_constraint=True,
                length=100,
            ),
            nullable=False,
        ),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("complete", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "completed_with_failure",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("failure_reason", sa.Text, nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_delayed_jobs_actor_id", "delayed_jobs", ["actor_id"])
    # Sweep query: complete = false AND locked = false AND run_at <= now
    op.create_index(
        "ix_delayed_jobs_ready",
        "delayed_jobs",
        ["complete", "locked", "run_at"],
    )
    op.create_index(
        "ix_delayed_jobs_locked",
        "delayed_jobs",
        ["locked", "locked_at"],
    )
    op.create_index("ix_delayed_jobs_failed_at", "delayed_jobs", ["failed_at"])


def downgrade() -> None:
    op.drop_index("ix_delayed_jobs_failed_at", table_name="delayed_jobs")
    op.drop_index("ix_delayed_jobs_locked", table_name="delayed_jobs")
    op.drop_index("ix_delayed_jobs_ready", table_name="delayed_jobs")
    op.drop_index("ix_delayed_jobs_actor_id", table_name="delayed_jobs")
    op.drop_table("delayed_jobs")
