"""Domain models for leads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Final
from uuid import UUID

from pydantic import AliasChoices, BaseModel, EmailStr, Field, HttpUrl, field_validator

NICHE_TAGS: Final = ("ceo", "diretor", "socio", "contador", "gerente", "outro", "decisor")
COMPANY_NICHE: Final = "empresa"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_niche(raw: str | None) -> str:
    """Clamp an automation-supplied profile tag onto the known set."""
    if not raw:
        return "outro"
    value = raw.strip().lower()
    return value if value in NICHE_TAGS else "outro"


class Lead(BaseModel):
    """A prospective contact moving through the pipeline."""

    id: UUID
    name: str
    role: str | None = None
    email: str | None = None
    phone: str | None = None
    linkedin_url: str | None = None
    niche: str
    company_id: UUID | None = None
    status: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class LeadCreate(BaseModel):
    """Payload for creating a lead by hand."""

    name: str = Field(min_length=2, validation_alias=AliasChoices("name", "nome"))
    role: str | None = Field(default=None, validation_alias=AliasChoices("role", "cargo"))
    linkedin_url: HttpUrl
    email: EmailStr | None = None
    phone: str | None = Field(default=None, validation_alias=AliasChoices("phone", "telefone"))
    niche: str = Field(min_length=2, validation_alias=AliasChoices("niche", "perfil"))
    company_id: UUID | None = Field(
        default=None, validation_alias=AliasChoices("company_id", "empresa_id")
    )


class LeadUpdate(BaseModel):
    """Field edits for an existing lead; status changes go through the status endpoint."""

    name: str = Field(min_length=2, validation_alias=AliasChoices("name", "nome"))
    role: str | None = Field(default=None, validation_alias=AliasChoices("role", "cargo"))
    linkedin_url: HttpUrl | None = None
    email: EmailStr | None = None
    phone: str | None = Field(default=None, validation_alias=AliasChoices("phone", "telefone"))
    niche: str | None = Field(default=None, validation_alias=AliasChoices("niche", "perfil"))
    company_id: UUID | None = Field(
        default=None, validation_alias=AliasChoices("company_id", "empresa_id")
    )

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < 2:
            raise ValueError("name must have at least 2 characters")
        return stripped

    @field_validator("niche")
    @classmethod
    def _non_blank_niche(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("niche cannot be blank when provided")
        return value


class AutomationLeadPayload(BaseModel):
    """Lead body carried by automation webhooks; only ``id`` is needed for transitions."""

    id: str | None = None
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "nome"))
    role: str | None = Field(default=None, validation_alias=AliasChoices("role", "cargo"))
    linkedin_url: str | None = None
    email: str | None = None
    phone: str | None = Field(default=None, validation_alias=AliasChoices("phone", "telefone"))
    niche: str | None = Field(default=None, validation_alias=AliasChoices("niche", "perfil"))
    company_id: str | None = Field(
        default=None, validation_alias=AliasChoices("company_id", "empresa_id")
    )
