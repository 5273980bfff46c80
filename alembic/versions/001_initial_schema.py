"""Initial schema - UserQuotas, Jobs and Generations tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create UserQuotas, Jobs and Generations tables."""
    op.create_table(
        "UserQuotas",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column(
            "role",
            sa.String(20),
            nullable=False,
            server_default="user",
            comment="'user' or 'admin'",
        ),
        sa.Column(
            "daily_limit",
            sa.Integer(),
            nullable=False,
            server_default="5",
            comment="Jobs allowed per day, 0 means unlimited",
        ),
        sa.Column("used_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_usage_date", sa.Date(), nullable=True),
        sa.Column(
            "version",
            sa.Integer(),
            nullable=False,
            server_default="0",
            comment="Compare-and-swap counter for quota updates",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "Jobs",
        sa.Column("job_id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("job_type", sa.String(20), nullable=False, comment="'sticker' or 'image'"),
        sa.Column("input_ref", sa.String(500), nullable=False),
        sa.Column("style", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("error_code", sa.String(50), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "result_ref",
            sa.String(64),
            nullable=True,
            comment="generation_id of the produced Generation",
        ),
        sa.Column("correlation_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_jobs_user", "Jobs", ["user_id"])
    op.create_index("ix_jobs_status", "Jobs", ["status"])
    op.create_index("ix_jobs_created", "Jobs", ["created_at"])

    op.create_table(
        "Generations",
        sa.Column("generation_id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("job_id", sa.String(64), nullable=False),
        sa.Column("input_ref", sa.String(500), nullable=False),
        sa.Column("output_ref", sa.String(500), nullable=False),
        sa.Column("job_type", sa.String(20), nullable=False),
        sa.Column("style", sa.String(100), nullable=False),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("job_id", name="uq_generations_job"),
    )
    op.create_index(
        "ix_generations_user_created",
        "Generations",
        ["user_id", "created_at"],
    )


def downgrade() -> None:
    """Drop UserQuotas, Jobs and Generations tables."""
    op.drop_index("ix_generations_user_created", table_name="Generations")
    op.drop_table("Generations")

    op.drop_index("ix_jobs_created", table_name="Jobs")
    op.drop_index("ix_jobs_status", table_name="Jobs")
    op.drop_index("ix_jobs_user", table_name="Jobs")
    op.drop_table("Jobs")

    op.drop_table("UserQuotas")
