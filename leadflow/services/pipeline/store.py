"""Persistence contract for the lead pipeline plus the in-memory backend."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import UUID

from leadflow.config import settings
from leadflow.models.company import Company
from leadflow.models.email_template import EmailTemplate
from leadflow.models.interaction import Interaction
from leadflow.models.lead import Lead
from leadflow.observability.metrics import metrics
from leadflow.services.pipeline.errors import PipelinePersistenceError
from leadflow.services.pipeline.feed import (
    DELETE,
    INSERT,
    INTERACTIONS_TABLE,
    LEADS_TABLE,
    UPDATE,
    InMemoryChangeFeed,
    get_change_feed,
    row_event,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class PipelineStore(Protocol):
    """Async select/insert/update/upsert/delete operations the services rely on.

    ``update_*`` return ``None`` when no row matched, mirroring an UPDATE that
    affected zero rows.
    """

    async def get_lead(self, lead_id: UUID) -> Lead | None:
        ...

    async def list_leads(
        self, *, niche: str | None = None, company_id: UUID | None = None
    ) -> list[Lead]:
        ...

    async def insert_lead(self, lead: Lead) -> Lead:
        ...

    async def update_lead(self, lead_id: UUID, values: Mapping[str, Any]) -> Lead | None:
        ...

    async def upsert_lead(self, lead: Lead) -> Lead:
        ...

    async def delete_lead(self, lead_id: UUID) -> bool:
        ...

    async def count_interactions(self, lead_id: UUID) -> int:
        ...

    async def list_roles(self) -> list[str]:
        ...

    async def get_company(self, company_id: UUID) -> Company | None:
        ...

    async def list_companies(
        self, *, name: str | None = None, size_bucket: str | None = None
    ) -> list[Company]:
        ...

    async def insert_company(self, company: Company) -> Company:
        ...

    async def update_company(
        self, company_id: UUID, values: Mapping[str, Any]
    ) -> Company | None:
        ...

    async def delete_company(self, company_id: UUID) -> bool:
        ...

    async def count_company_leads(self, company_id: UUID) -> int:
        ...

    async def insert_interaction(self, interaction: Interaction) -> Interaction:
        ...

    async def get_interaction(self, interaction_id: UUID) -> Interaction | None:
        ...

    async def list_interactions(self, lead_id: UUID | None = None) -> list[Interaction]:
        ...

    async def update_interaction(
        self, interaction_id: UUID, values: Mapping[str, Any]
    ) -> Interaction | None:
        ...

    async def delete_interaction(self, interaction_id: UUID) -> bool:
        ...

    async def list_email_templates(self) -> list[EmailTemplate]:
        ...

    async def upsert_email_template(self, template: EmailTemplate) -> EmailTemplate:
        ...


def _newest_first(items: list[Any]) -> list[Any]:
    return sorted(items, key=lambda item: item.created_at or _EPOCH, reverse=True)


class InMemoryPipelineStore(PipelineStore):
    """Dict-backed store used for local development and tests.

    When a change feed is attached, every lead and interaction write is
    published as a row-level event, the way the hosted database pushes them.
    """

    def __init__(self, *, feed: InMemoryChangeFeed | None = None) -> None:
        self._leads: dict[UUID, Lead] = {}
        self._companies: dict[UUID, Company] = {}
        self._interactions: dict[UUID, Interaction] = {}
        self._templates: dict[str, EmailTemplate] = {}
        self._feed = feed
        self.write_count = 0

    # Leads -----------------------------------------------------------------

    async def get_lead(self, lead_id: UUID) -> Lead | None:
        return self._leads.get(lead_id)

    async def list_leads(
        self, *, niche: str | None = None, company_id: UUID | None = None
    ) -> list[Lead]:
        leads = [
            lead
            for lead in self._leads.values()
            if (niche is None or lead.niche == niche)
            and (company_id is None or lead.company_id == company_id)
        ]
        return _newest_first(leads)

    async def insert_lead(self, lead: Lead) -> Lead:
        if lead.id in self._leads:
            raise PipelinePersistenceError("Lead already exists.", code="409_DUPLICATE")
        self._check_company(lead.company_id)
        self._leads[lead.id] = lead
        self._record_write(LEADS_TABLE, INSERT, new=lead)
        return lead

    async def update_lead(self, lead_id: UUID, values: Mapping[str, Any]) -> Lead | None:
        current = self._leads.get(lead_id)
        if current is None:
            return None
        if "company_id" in values:
            self._check_company(values["company_id"])
        updated = Lead.model_validate({**current.model_dump(), **values, "id": lead_id})
        self._leads[lead_id] = updated
        self._record_write(LEADS_TABLE, UPDATE, new=updated, old=current)
        return updated

    async def upsert_lead(self, lead: Lead) -> Lead:
        if lead.id in self._leads:
            values = lead.model_dump(exclude={"id", "created_at"})
            updated = await self.update_lead(lead.id, values)
            return updated or lead
        return await self.insert_lead(lead)

    async def delete_lead(self, lead_id: UUID) -> bool:
        if await self.count_interactions(lead_id):
            raise PipelinePersistenceError(
                "Lead is still referenced by interactions.", code="500_FOREIGN_KEY"
            )
        removed = self._leads.pop(lead_id, None)
        if removed is None:
            return False
        self._record_write(LEADS_TABLE, DELETE, old=removed)
        return True

    async def count_interactions(self, lead_id: UUID) -> int:
        return sum(1 for item in self._interactions.values() if item.lead_id == lead_id)

    async def list_roles(self) -> list[str]:
        roles = {lead.role for lead in self._leads.values() if lead.role and lead.role.strip()}
        return sorted(roles)

    # Companies -------------------------------------------------------------

    async def get_company(self, company_id: UUID) -> Company | None:
        return self._companies.get(company_id)

    async def list_companies(
        self, *, name: str | None = None, size_bucket: str | None = None
    ) -> list[Company]:
        needle = name.lower() if name else None
        companies = [
            company
            for company in self._companies.values()
            if (needle is None or needle in company.name.lower())
            and (size_bucket is None or company.size_bucket == size_bucket)
        ]
        return _newest_first(companies)

    async def insert_company(self, company: Company) -> Company:
        if company.id in self._companies:
            raise PipelinePersistenceError("Company already exists.", code="409_DUPLICATE")
        self._companies[company.id] = company
        self.write_count += 1
        return company

    async def update_company(
        self, company_id: UUID, values: Mapping[str, Any]
    ) -> Company | None:
        current = self._companies.get(company_id)
        if current is None:
            return None
        updated = Company.model_validate({**current.model_dump(), **values, "id": company_id})
        self._companies[company_id] = updated
        self.write_count += 1
        return updated

    async def delete_company(self, company_id: UUID) -> bool:
        if await self.count_company_leads(company_id):
            raise PipelinePersistenceError(
                "Company is still referenced by leads.", code="500_FOREIGN_KEY"
            )
        removed = self._companies.pop(company_id, None)
        if removed is not None:
            self.write_count += 1
        return removed is not None

    async def count_company_leads(self, company_id: UUID) -> int:
        return sum(1 for lead in self._leads.values() if lead.company_id == company_id)

    # Interactions ----------------------------------------------------------

    async def insert_interaction(self, interaction: Interaction) -> Interaction:
        if interaction.lead_id not in self._leads:
            raise PipelinePersistenceError(
                "Interaction references a missing lead.", code="500_FOREIGN_KEY"
            )
        stored = interaction.model_copy(update={"lead_name": None})
        self._interactions[stored.id] = stored
        self._record_write(INTERACTIONS_TABLE, INSERT, new=stored)
        return self._with_lead_name(stored)

    async def get_interaction(self, interaction_id: UUID) -> Interaction | None:
        stored = self._interactions.get(interaction_id)
        return self._with_lead_name(stored) if stored else None

    async def list_interactions(self, lead_id: UUID | None = None) -> list[Interaction]:
        items = [
            self._with_lead_name(item)
            for item in self._interactions.values()
            if lead_id is None or item.lead_id == lead_id
        ]
        return _newest_first(items)

    async def update_interaction(
        self, interaction_id: UUID, values: Mapping[str, Any]
    ) -> Interaction | None:
        current = self._interactions.get(interaction_id)
        if current is None:
            return None
        updated = Interaction.model_validate(
            {**current.model_dump(), **values, "id": interaction_id, "lead_name": None}
        )
        self._interactions[interaction_id] = updated
        self._record_write(INTERACTIONS_TABLE, UPDATE, new=updated, old=current)
        return self._with_lead_name(updated)

    async def delete_interaction(self, interaction_id: UUID) -> bool:
        removed = self._interactions.pop(interaction_id, None)
        if removed is None:
            return False
        self._record_write(INTERACTIONS_TABLE, DELETE, old=removed)
        return True

    # E-mail templates ------------------------------------------------------

    async def list_email_templates(self) -> list[EmailTemplate]:
        return [self._templates[stage] for stage in sorted(self._templates)]

    async def upsert_email_template(self, template: EmailTemplate) -> EmailTemplate:
        self._templates[template.stage] = template
        self.write_count += 1
        return template

    # Helpers ---------------------------------------------------------------

    def _with_lead_name(self, interaction: Interaction) -> Interaction:
        lead = self._leads.get(interaction.lead_id)
        return interaction.model_copy(update={"lead_name": lead.name if lead else None})

    def _check_company(self, company_id: UUID | None) -> None:
        if company_id is not None and company_id not in self._companies:
            raise PipelinePersistenceError(
                "Lead references a missing company.", code="500_FOREIGN_KEY"
            )

    def _record_write(
        self,
        table: str,
        kind: str,
        *,
        new: Lead | Interaction | None = None,
        old: Lead | Interaction | None = None,
    ) -> None:
        self.write_count += 1
        metrics.increment(
            "pipeline.store.write", tags={"table": table, "kind": kind, "backend": "memory"}
        )
        if self._feed is not None:
            self._feed.publish(row_event(table, kind, new=new, old=old))


def build_pipeline_store(
    database_url: str | None = None, *, feed: InMemoryChangeFeed | None = None
) -> PipelineStore:
    """Instantiate a PipelineStore using DATABASE_URL when available.

    Both backends publish committed lead and interaction writes to ``feed``
    (the process-wide change feed by default), which drives the realtime bridge.
    """
    resolved_url = database_url or settings.database_url
    feed = feed if feed is not None else get_change_feed()
    if not resolved_url:
        logger.info("pipeline.store.initialized", extra={"backend": "memory"})
        return InMemoryPipelineStore(feed=feed)
    from leadflow.services.pipeline.sql_store import SQLModelPipelineStore

    try:
        store = SQLModelPipelineStore(
            resolved_url,
            pool_min_size=settings.db_pool_min_size,
            pool_max_size=settings.db_pool_max_size,
            feed=feed,
        )
        logger.info("pipeline.store.initialized", extra={"backend": "database"})
        return store
    except Exception:
        logger.exception("pipeline.store.init_failed", extra={"backend": "database"})
        raise


_STORE_INSTANCE: PipelineStore | None = None


def get_pipeline_store() -> PipelineStore:
    """Singleton accessor shared by the services and API routes."""
    global _STORE_INSTANCE  # noqa: PLW0603
    if _STORE_INSTANCE is None:
        _STORE_INSTANCE = build_pipeline_store()
    return _STORE_INSTANCE
