"""Per-stage e-mail templates used by the automation cadence."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Final

from pydantic import AliasChoices, BaseModel, Field

# Cadence steps: first contact, day-3 and day-7 follow-ups.
TEMPLATE_STAGES: Final[tuple[str, ...]] = ("day01", "day03", "day07")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmailTemplate(BaseModel):
    """One template per cadence step, keyed by ``stage``."""

    stage: str
    subject: str = ""
    body: str = ""
    active: bool = True
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = {"from_attributes": True}


class EmailTemplateUpdate(BaseModel):
    """Upsert payload; the historical field names are accepted too."""

    stage: str = Field(validation_alias=AliasChoices("stage", "etapa"))
    subject: str | None = Field(default=None, validation_alias=AliasChoices("subject", "assunto"))
    body: str | None = Field(default=None, validation_alias=AliasChoices("body", "corpo"))
    active: bool | None = Field(default=None, validation_alias=AliasChoices("active", "ativo"))
