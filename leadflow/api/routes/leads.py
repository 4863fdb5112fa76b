"""Lead endpoints: list/search, pipeline columns and CRUD."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from leadflow.api.errors import to_http_exception
from leadflow.models.interaction import Interaction
from leadflow.models.lead import Lead, LeadCreate, LeadUpdate
from leadflow.services.pipeline import vocabulary, view_model
from leadflow.services.pipeline.directory import LeadDirectory, get_lead_directory
from leadflow.services.pipeline.engine import StatusTransitionEngine, get_transition_engine
from leadflow.services.pipeline.errors import PipelineError

router = APIRouter()
logger = logging.getLogger(__name__)


class PipelineColumnResponse(BaseModel):
    stage: str
    label: str
    color: str
    icon: str
    count: int
    leads: list[Lead]


@router.get("/leads", response_model=list[Lead])
async def list_leads(
    niche: str | None = Query(None, description="Exact profile/niche tag."),
    company_id: UUID | None = Query(None),
    stage: str = Query(vocabulary.ALL_STAGES, description="Pipeline stage or 'all'."),
    q: str | None = Query(None, description="Search name, role, niche and profile URL."),
    directory: LeadDirectory = Depends(get_lead_directory),
) -> list[Lead]:
    if stage != vocabulary.ALL_STAGES and not vocabulary.is_valid_stage(stage):
        raise HTTPException(status_code=400, detail=f"Unknown stage '{stage}'.")
    try:
        leads = await directory.list_leads(niche=niche, company_id=company_id)
    except PipelineError as exc:
        raise to_http_exception(exc, "leads.api_error") from exc
    leads = view_model.normalize_all(leads)
    return view_model.search(view_model.filter_by_stage(leads, stage), q)


@router.get("/leads/roles", response_model=list[str])
async def list_roles(directory: LeadDirectory = Depends(get_lead_directory)) -> list[str]:
    """Distinct, non-empty roles used by the lead filters."""
    try:
        return await directory.list_roles()
    except PipelineError as exc:
        raise to_http_exception(exc, "leads.api_error") from exc


@router.get("/leads/pipeline", response_model=list[PipelineColumnResponse])
async def pipeline(
    q: str | None = Query(None),
    directory: LeadDirectory = Depends(get_lead_directory),
) -> list[PipelineColumnResponse]:
    """Leads grouped into every pipeline stage, in display order."""
    try:
        leads = await directory.list_leads()
    except PipelineError as exc:
        raise to_http_exception(exc, "leads.api_error") from exc
    columns = view_model.group_by_stage(view_model.search(leads, q))
    return [
        PipelineColumnResponse(
            stage=column.stage,
            label=column.label,
            color=column.color,
            icon=column.icon,
            count=column.count,
            leads=column.leads,
        )
        for column in columns
    ]


@router.post("/leads", response_model=Lead, status_code=status.HTTP_201_CREATED)
async def create_lead(
    payload: LeadCreate,
    directory: LeadDirectory = Depends(get_lead_directory),
) -> Lead:
    try:
        return await directory.create_lead(payload)
    except PipelineError as exc:
        raise to_http_exception(exc, "leads.api_error") from exc


@router.get("/leads/{lead_id}", response_model=Lead)
async def get_lead(
    lead_id: str, directory: LeadDirectory = Depends(get_lead_directory)
) -> Lead:
    try:
        lead = await directory.get_lead(lead_id)
    except PipelineError as exc:
        raise to_http_exception(exc, "leads.api_error", lead_id=lead_id) from exc
    return lead.model_copy(update={"status": vocabulary.normalize(lead.status)})


@router.put("/leads/{lead_id}", response_model=Lead)
async def update_lead(
    lead_id: str,
    payload: LeadUpdate,
    directory: LeadDirectory = Depends(get_lead_directory),
) -> Lead:
    try:
        return await directory.update_lead(lead_id, payload)
    except PipelineError as exc:
        raise to_http_exception(exc, "leads.api_error", lead_id=lead_id) from exc


@router.delete("/leads/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lead(
    lead_id: str, directory: LeadDirectory = Depends(get_lead_directory)
) -> None:
    try:
        await directory.delete_lead(lead_id)
    except PipelineError as exc:
        raise to_http_exception(exc, "leads.api_error", lead_id=lead_id) from exc


@router.get("/leads/{lead_id}/interactions", response_model=list[Interaction])
async def list_lead_interactions(
    lead_id: str,
    engine: StatusTransitionEngine = Depends(get_transition_engine),
) -> list[Interaction]:
    """Interaction history for a lead, newest first."""
    try:
        return await engine.interactions.list_for_lead(lead_id)
    except PipelineError as exc:
        raise to_http_exception(exc, "leads.api_error", lead_id=lead_id) from exc
