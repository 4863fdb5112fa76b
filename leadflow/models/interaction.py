"""Domain models for the interaction log."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Interaction(BaseModel):
    """One contact event recorded against a lead.

    ``status`` uses the interaction vocabulary (contatado, respondeu, ...), which
    is distinct from the lead pipeline stages.
    """

    id: UUID
    lead_id: UUID
    status: str
    channel: str | None = None
    note: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    lead_name: str | None = Field(default=None, description="Joined from the owning lead.")

    model_config = {"from_attributes": True}


class InteractionCreate(BaseModel):
    lead_id: str
    status: str
    channel: str | None = Field(default=None, validation_alias=AliasChoices("channel", "canal"))
    note: str | None = Field(
        default=None, validation_alias=AliasChoices("note", "observacao")
    )


class InteractionUpdate(BaseModel):
    status: str
    channel: str | None = Field(default=None, validation_alias=AliasChoices("channel", "canal"))
    note: str | None = Field(
        default=None, validation_alias=AliasChoices("note", "observacao")
    )
