"""Create the email_templates table, one row per cadence stage."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "9c3d1e5f7a2b"
down_revision = "4b9e2c7a1f3d"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "email_templates",
        sa.Column("stage", sa.String(length=16), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.PrimaryKeyConstraint("stage", name="pk_email_templates"),
        sa.CheckConstraint(
            "stage IN ('day01', 'day03', 'day07')", name="ck_email_templates_stage"
        ),
    )


def downgrade() -> None:
    op.drop_table("email_templates")
