"""Create companies, leads and interactions tables.

``leads.status`` is a free string rather than an enum: historical values are
normalised on read, so the column must accept them. Both foreign keys are
RESTRICT so a company with leads, or a lead with interactions, cannot be
removed underneath the dashboard.
"""

from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "4b9e2c7a1f3d"
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger(__name__)

_UTC_NOW = sa.text("timezone('utc', now())")
_GEN_UUID = sa.text("gen_random_uuid()")


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False, server_default=_GEN_UUID),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("city", sa.String(length=255), nullable=True),
        sa.Column("size_bucket", sa.String(length=64), nullable=True),
        sa.Column("website", sa.String(length=512), nullable=True),
        sa.Column("linkedin_url", sa.String(length=512), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=_UTC_NOW
        ),
        sa.PrimaryKeyConstraint("id", name="pk_companies"),
    )
    op.create_index("ix_companies_size_bucket", "companies", ["size_bucket"], unique=False)

    op.create_table(
        "leads",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False, server_default=_GEN_UUID),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("linkedin_url", sa.String(length=512), nullable=True),
        sa.Column("niche", sa.String(length=64), nullable=False),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.String(length=64), nullable=True, server_default="novo"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=_UTC_NOW
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_leads"),
        sa.ForeignKeyConstraint(
            ["company_id"], ["companies.id"], name="fk_leads_company_id", ondelete="RESTRICT"
        ),
    )
    op.create_index("ix_leads_company_id", "leads", ["company_id"], unique=False)
    op.create_index("ix_leads_status", "leads", ["status"], unique=False)

    op.create_table(
        "interactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False, server_default=_GEN_UUID),
        sa.Column("lead_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(length=64), nullable=False),
        sa.Column("channel", sa.String(length=64), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=_UTC_NOW
        ),
        sa.PrimaryKeyConstraint("id", name="pk_interactions"),
        sa.ForeignKeyConstraint(
            ["lead_id"], ["leads.id"], name="fk_interactions_lead_id", ondelete="RESTRICT"
        ),
    )
    op.create_index(
        "ix_interactions_lead_created", "interactions", ["lead_id", "created_at"], unique=False
    )
    logger.info("pipeline.migration.applied", extra={"revision": revision})


def downgrade() -> None:
    op.drop_index("ix_interactions_lead_created", table_name="interactions")
    op.drop_table("interactions")
    op.drop_index("ix_leads_status", table_name="leads")
    op.drop_index("ix_leads_company_id", table_name="leads")
    op.drop_table("leads")
    op.drop_index("ix_companies_size_bucket", table_name="companies")
    op.drop_table("companies")
