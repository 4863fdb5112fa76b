"""Lead and company bookkeeping around the transition engine.

Creation seeds every lead at the initial stage; deletion is refused while
dependants still point at the record.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

from leadflow.clients.automation import AutomationNotifier, get_notifier
from leadflow.models.company import Company, CompanyCreate, CompanyUpdate
from leadflow.models.lead import (
    COMPANY_NICHE,
    AutomationLeadPayload,
    Lead,
    LeadCreate,
    LeadUpdate,
    normalize_niche,
)
from leadflow.observability.metrics import metrics
from leadflow.services.pipeline import vocabulary
from leadflow.services.pipeline.errors import (
    PipelineError,
    PipelineNotFoundError,
    PipelineValidationError,
    ReferentialGuardError,
)
from leadflow.services.pipeline.identifiers import is_identifier, parse_identifier
from leadflow.services.pipeline.store import PipelineStore, get_pipeline_store

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_str(value: object) -> str | None:
    return str(value) if value is not None else None


class LeadDirectory:
    """CRUD over leads and companies with referential guards."""

    def __init__(
        self,
        store: PipelineStore | None = None,
        *,
        notifier: AutomationNotifier | None = None,
    ) -> None:
        self._store = store or get_pipeline_store()
        self._notifier = notifier or get_notifier()

    # Leads -----------------------------------------------------------------

    async def get_lead(self, lead_id: UUID | str) -> Lead:
        resolved_id = parse_identifier(lead_id)
        lead = await self._store.get_lead(resolved_id)
        if lead is None:
            raise PipelineNotFoundError(f"Lead {resolved_id} not found.")
        return lead

    async def list_leads(
        self, *, niche: str | None = None, company_id: UUID | None = None
    ) -> list[Lead]:
        return await self._store.list_leads(niche=niche, company_id=company_id)

    async def list_roles(self) -> list[str]:
        return await self._store.list_roles()

    async def create_lead(self, payload: LeadCreate) -> Lead:
        """Insert a lead at the initial stage and tell the automation engine about it."""
        await self._require_company(payload.company_id)
        lead = Lead(
            id=uuid4(),
            name=payload.name,
            role=payload.role,
            email=_as_str(payload.email),
            phone=payload.phone,
            linkedin_url=_as_str(payload.linkedin_url),
            niche=payload.niche,
            company_id=payload.company_id,
            status=vocabulary.INITIAL_STAGE,
            created_at=_now(),
        )
        created = await self._store.insert_lead(lead)
        metrics.increment("pipeline.lead.created", tags={"source": "manual"})
        logger.info("pipeline.lead.created", extra={"lead_id": str(created.id)})
        self._notifier.notify(
            "lead.created",
            {
                "lead": {
                    "id": str(created.id),
                    "nome": created.name,
                    "email": created.email,
                    "telefone": created.phone,
                    "perfil": created.niche,
                    "status": created.status,
                    "empresa_id": _as_str(created.company_id),
                }
            },
        )
        return created

    async def update_lead(self, lead_id: UUID | str, payload: LeadUpdate) -> Lead:
        resolved_id = parse_identifier(lead_id)
        await self._require_company(payload.company_id)
        values = {
            "name": payload.name,
            "role": payload.role.strip() if payload.role and payload.role.strip() else None,
            "linkedin_url": _as_str(payload.linkedin_url),
            "email": _as_str(payload.email),
            "phone": payload.phone or None,
            "company_id": payload.company_id,
            "updated_at": _now(),
        }
        if payload.niche is not None:
            values["niche"] = payload.niche.strip()
        updated = await self._store.update_lead(resolved_id, values)
        if updated is None:
            raise PipelineNotFoundError(f"Lead {resolved_id} not found.")
        logger.info("pipeline.lead.updated", extra={"lead_id": str(resolved_id)})
        return updated

    async def delete_lead(self, lead_id: UUID | str) -> None:
        resolved_id = parse_identifier(lead_id)
        referencing = await self._store.count_interactions(resolved_id)
        if referencing:
            raise ReferentialGuardError(
                f"Lead {resolved_id} still has {referencing} interaction(s); "
                "remove them before deleting the lead."
            )
        if not await self._store.delete_lead(resolved_id):
            raise PipelineNotFoundError(f"Lead {resolved_id} not found.")
        logger.info("pipeline.lead.deleted", extra={"lead_id": str(resolved_id)})

    async def upsert_automation_lead(self, payload: AutomationLeadPayload) -> Lead:
        """Create or refresh a lead pushed by the automation engine, reset to the initial stage.

        A malformed id is ignored and a fresh one assigned instead.
        """
        if not payload.name or not payload.linkedin_url:
            raise PipelineValidationError(
                "Missing required fields (name, linkedin_url).", code="400_MISSING_FIELDS"
            )
        lead_id = UUID(payload.id) if is_identifier(payload.id) else None
        if lead_id is None and payload.id:
            logger.warning("pipeline.lead.automation_invalid_id", extra={"raw_id": payload.id})
        company_id = UUID(payload.company_id) if is_identifier(payload.company_id) else None

        existing = await self._store.get_lead(lead_id) if lead_id else None
        now = _now()
        lead = Lead(
            id=lead_id or uuid4(),
            name=payload.name,
            role=payload.role,
            linkedin_url=payload.linkedin_url,
            email=payload.email,
            phone=payload.phone,
            niche=normalize_niche(payload.niche),
            company_id=company_id,
            status=vocabulary.INITIAL_STAGE,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        stored = await self._store.upsert_lead(lead)
        metrics.increment(
            "pipeline.lead.created",
            tags={"source": "automation", "existing": existing is not None},
        )
        logger.info(
            "pipeline.lead.automation_upserted",
            extra={"lead_id": str(stored.id), "existing": existing is not None},
        )
        return stored

    # Companies -------------------------------------------------------------

    async def list_companies(
        self, *, name: str | None = None, size_bucket: str | None = None
    ) -> list[Company]:
        return await self._store.list_companies(name=name, size_bucket=size_bucket)

    async def create_company(self, payload: CompanyCreate) -> Company:
        """Insert a company and seed a lead for it; the seed lead is best effort."""
        company = Company(
            id=uuid4(),
            name=payload.name,
            city=payload.city,
            size_bucket=payload.size_bucket,
            website=_as_str(payload.website),
            linkedin_url=_as_str(payload.linkedin_url),
            created_at=_now(),
        )
        created = await self._store.insert_company(company)
        logger.info("pipeline.company.created", extra={"company_id": str(created.id)})

        seed = Lead(
            id=uuid4(),
            name=created.name,
            niche=COMPANY_NICHE,
            company_id=created.id,
            status=vocabulary.INITIAL_STAGE,
            linkedin_url=created.linkedin_url,
            created_at=_now(),
        )
        try:
            await self._store.insert_lead(seed)
        except PipelineError:
            logger.exception(
                "pipeline.company.seed_lead_failed", extra={"company_id": str(created.id)}
            )
            metrics.increment("pipeline.company.seed_lead_failed")
        return created

    async def update_company(self, company_id: UUID | str, payload: CompanyUpdate) -> Company:
        resolved_id = parse_identifier(company_id, field="company_id")
        updated = await self._store.update_company(
            resolved_id,
            {
                "name": payload.name,
                "city": payload.city,
                "size_bucket": payload.size_bucket,
                "website": _as_str(payload.website),
                "linkedin_url": _as_str(payload.linkedin_url),
            },
        )
        if updated is None:
            raise PipelineNotFoundError(f"Company {resolved_id} not found.")
        return updated

    async def delete_company(self, company_id: UUID | str) -> None:
        resolved_id = parse_identifier(company_id, field="company_id")
        referencing = await self._store.count_company_leads(resolved_id)
        if referencing:
            raise ReferentialGuardError(
                f"Company {resolved_id} still has {referencing} lead(s) linked to it."
            )
        if not await self._store.delete_company(resolved_id):
            raise PipelineNotFoundError(f"Company {resolved_id} not found.")
        logger.info("pipeline.company.deleted", extra={"company_id": str(resolved_id)})

    async def _require_company(self, company_id: UUID | None) -> None:
        if company_id is None:
            return
        if await self._store.get_company(company_id) is None:
            raise PipelineValidationError(
                f"company_id {company_id} does not reference an existing company.",
                code="400_UNKNOWN_COMPANY",
            )


_DIRECTORY_INSTANCE: LeadDirectory | None = None


def get_lead_directory() -> LeadDirectory:
    """Singleton accessor used by API routes."""
    global _DIRECTORY_INSTANCE  # noqa: PLW0603
    if _DIRECTORY_INSTANCE is None:
        _DIRECTORY_INSTANCE = LeadDirectory()
    return _DIRECTORY_INSTANCE
