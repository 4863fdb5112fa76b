"""SQLModel mappings for companies, leads, interactions and e-mail templates."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, String, Text, Uuid
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from leadflow.models.company import Company
from leadflow.models.email_template import EmailTemplate
from leadflow.models.interaction import Interaction
from leadflow.models.lead import Lead


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "timezone('utc', now())"


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class CompanyRecord(SQLModel, table=True):
    """ORM model for companies."""

    __tablename__ = "companies"
    __table_args__ = (sa.Index("ix_companies_size_bucket", "size_bucket"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    name: str = Field(sa_column=Column(String(length=255), nullable=False))
    city: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    size_bucket: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    website: str | None = Field(default=None, sa_column=Column(String(length=512), nullable=True))
    linkedin_url: str | None = Field(
        default=None, sa_column=Column(String(length=512), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    @classmethod
    def from_domain(cls, company: Company) -> CompanyRecord:
        return cls(**company.model_dump())

    def to_domain(self) -> Company:
        return Company(
            id=self.id,
            name=self.name,
            city=self.city,
            size_bucket=self.size_bucket,
            website=self.website,
            linkedin_url=self.linkedin_url,
            created_at=_as_utc(self.created_at),
        )


class LeadRecord(SQLModel, table=True):
    """ORM model for leads; ``status`` is stored raw and normalised on read paths."""

    __tablename__ = "leads"
    __table_args__ = (
        sa.Index("ix_leads_company_id", "company_id"),
        sa.Index("ix_leads_status", "status"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    name: str = Field(sa_column=Column(String(length=255), nullable=False))
    role: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    email: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    phone: str | None = Field(default=None, sa_column=Column(String(length=64), nullable=True))
    linkedin_url: str | None = Field(
        default=None, sa_column=Column(String(length=512), nullable=True)
    )
    niche: str = Field(sa_column=Column(String(length=64), nullable=False))
    company_id: UUID | None = Field(
        default=None,
        sa_column=Column(
            Uuid(as_uuid=True),
            sa.ForeignKey("companies.id", ondelete="RESTRICT"),
            nullable=True,
        ),
    )
    status: str | None = Field(
        default="novo",
        sa_column=Column(String(length=64), nullable=True, server_default="novo"),
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )
    updated_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    @classmethod
    def from_domain(cls, lead: Lead) -> LeadRecord:
        return cls(**lead.model_dump())

    def to_domain(self) -> Lead:
        return Lead(
            id=self.id,
            name=self.name,
            role=self.role,
            email=self.email,
            phone=self.phone,
            linkedin_url=self.linkedin_url,
            niche=self.niche,
            company_id=self.company_id,
            status=self.status,
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at),
        )


class InteractionRecord(SQLModel, table=True):
    """ORM model for interaction log entries."""

    __tablename__ = "interactions"
    __table_args__ = (sa.Index("ix_interactions_lead_created", "lead_id", "created_at"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    lead_id: UUID = Field(
        sa_column=Column(
            Uuid(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="RESTRICT"),
            nullable=False,
        )
    )
    status: str = Field(sa_column=Column(String(length=64), nullable=False))
    channel: str | None = Field(default=None, sa_column=Column(String(length=64), nullable=True))
    note: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    @classmethod
    def from_domain(cls, interaction: Interaction) -> InteractionRecord:
        return cls(**interaction.model_dump(exclude={"lead_name"}))

    def to_domain(self, *, lead_name: str | None = None) -> Interaction:
        return Interaction(
            id=self.id,
            lead_id=self.lead_id,
            status=self.status,
            channel=self.channel,
            note=self.note,
            created_at=_as_utc(self.created_at),
            lead_name=lead_name,
        )


class EmailTemplateRecord(SQLModel, table=True):
    """ORM model for cadence templates; one row per stage."""

    __tablename__ = "email_templates"

    stage: str = Field(sa_column=Column(String(length=16), primary_key=True, nullable=False))
    subject: str = Field(default="", sa_column=Column(String(length=255), nullable=False))
    body: str = Field(default="", sa_column=Column(Text, nullable=False))
    active: bool = Field(
        default=True, sa_column=Column(Boolean, nullable=False, server_default=sa.true())
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    @classmethod
    def from_domain(cls, template: EmailTemplate) -> EmailTemplateRecord:
        return cls(**template.model_dump())

    def to_domain(self) -> EmailTemplate:
        return EmailTemplate(
            stage=self.stage,
            subject=self.subject,
            body=self.body,
            active=self.active,
            updated_at=_as_utc(self.updated_at),
        )
