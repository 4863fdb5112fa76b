"""Builders for leads, companies and interactions used across the suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from leadflow.models.company import Company
from leadflow.models.interaction import Interaction
from leadflow.models.lead import Lead
from leadflow.services.pipeline.store import PipelineStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
WEBHOOK_SECRET = "test-automation-secret"


def make_lead(**overrides: Any) -> Lead:
    values: dict[str, Any] = {
        "id": uuid4(),
        "name": "Ana Souza",
        "role": "Diretora Financeira",
        "linkedin_url": "https://www.linkedin.com/in/ana-souza",
        "niche": "diretor",
        "status": "novo",
        "created_at": BASE_TIME,
    }
    values.update(overrides)
    return Lead(**values)


def make_company(**overrides: Any) -> Company:
    values: dict[str, Any] = {
        "id": uuid4(),
        "name": "Contabil Prime",
        "city": "Campinas",
        "size_bucket": "21_ate_50",
        "created_at": BASE_TIME,
    }
    values.update(overrides)
    return Company(**values)


def make_interaction(lead: Lead, *, minutes: int = 0, **overrides: Any) -> Interaction:
    values: dict[str, Any] = {
        "id": uuid4(),
        "lead_id": lead.id,
        "status": "contatado",
        "channel": "linkedin",
        "created_at": BASE_TIME + timedelta(minutes=minutes),
    }
    values.update(overrides)
    return Interaction(**values)


async def seed_lead(store: PipelineStore, **overrides: Any) -> Lead:
    return await store.insert_lead(make_lead(**overrides))
