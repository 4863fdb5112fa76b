"""Interaction log endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from leadflow.api.errors import to_http_exception
from leadflow.models.interaction import Interaction, InteractionCreate, InteractionUpdate
from leadflow.services.pipeline import vocabulary
from leadflow.services.pipeline.engine import StatusTransitionEngine, get_transition_engine
from leadflow.services.pipeline.errors import PipelineError

router = APIRouter()
logger = logging.getLogger(__name__)


class InteractionCreated(BaseModel):
    interaction: Interaction
    lead_status: str
    lead_status_label: str
    lead_status_updated: bool


@router.post(
    "/interactions", response_model=InteractionCreated, status_code=status.HTTP_201_CREATED
)
async def create_interaction(
    payload: InteractionCreate,
    engine: StatusTransitionEngine = Depends(get_transition_engine),
) -> InteractionCreated:
    """Log an interaction and apply the lead status it maps to, if any."""
    try:
        outcome = await engine.record_interaction(
            payload.lead_id, payload.status, payload.channel, payload.note
        )
    except PipelineError as exc:
        raise to_http_exception(
            exc, "interactions.api_error", lead_id=payload.lead_id, status=payload.status
        ) from exc
    return InteractionCreated(
        interaction=outcome.interaction,
        lead_status=outcome.lead_status,
        lead_status_label=vocabulary.label(outcome.lead_status),
        lead_status_updated=outcome.lead_status_updated,
    )


@router.get("/interactions", response_model=list[Interaction])
async def list_interactions(
    engine: StatusTransitionEngine = Depends(get_transition_engine),
) -> list[Interaction]:
    try:
        return await engine.interactions.list_all()
    except PipelineError as exc:
        raise to_http_exception(exc, "interactions.api_error") from exc


@router.put("/interactions/{interaction_id}", response_model=Interaction)
async def update_interaction(
    interaction_id: str,
    payload: InteractionUpdate,
    engine: StatusTransitionEngine = Depends(get_transition_engine),
) -> Interaction:
    """Edit an entry; the owning lead's status is left alone."""
    try:
        return await engine.interactions.update(interaction_id, payload)
    except PipelineError as exc:
        raise to_http_exception(
            exc, "interactions.api_error", interaction_id=interaction_id
        ) from exc


@router.delete("/interactions/{interaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_interaction(
    interaction_id: str,
    engine: StatusTransitionEngine = Depends(get_transition_engine),
) -> None:
    try:
        await engine.interactions.remove(interaction_id)
    except PipelineError as exc:
        raise to_http_exception(
            exc, "interactions.api_error", interaction_id=interaction_id
        ) from exc
