"""Domain models for companies."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, HttpUrl


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Company(BaseModel):
    """An organisation leads may belong to."""

    id: UUID
    name: str
    city: str | None = None
    size_bucket: str | None = Field(
        default=None, description="Headcount bucket, e.g. 10_ate_20 or 21_ate_50."
    )
    website: str | None = None
    linkedin_url: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = {"from_attributes": True}


class CompanyCreate(BaseModel):
    name: str = Field(min_length=2, validation_alias=AliasChoices("name", "nome"))
    city: str | None = Field(default=None, validation_alias=AliasChoices("city", "cidade"))
    size_bucket: str = Field(min_length=1, validation_alias=AliasChoices("size_bucket", "tamanho"))
    website: HttpUrl | None = Field(default=None, validation_alias=AliasChoices("website", "site"))
    linkedin_url: HttpUrl | None = None


class CompanyUpdate(CompanyCreate):
    """Full replacement of the editable company fields."""
