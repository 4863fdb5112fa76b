"""Inbound webhooks posted by the automation engine.

Every endpoint checks the shared-secret header before reading the body, then
applies exactly one fixed transition. Acknowledgements are idempotent by lead
id, so at-least-once delivery from the automation side is safe.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ValidationError

from leadflow.api.errors import to_http_exception
from leadflow.config import settings
from leadflow.models.lead import AutomationLeadPayload, Lead
from leadflow.observability.metrics import metrics
from leadflow.services.pipeline.directory import LeadDirectory, get_lead_directory
from leadflow.services.pipeline.engine import (
    AutomationEvent,
    StatusTransitionEngine,
    get_transition_engine,
)
from leadflow.services.pipeline.errors import PipelineError
from leadflow.services.pipeline.identifiers import is_identifier

logger = logging.getLogger(__name__)


async def verify_automation_signature(request: Request) -> None:
    """Reject requests whose shared-secret header is missing or wrong."""
    secret = settings.automation_shared_secret
    provided = request.headers.get(settings.automation_signature_header)
    if not settings.automation_inbound_enabled:
        logger.error("webhook.secret_not_configured", extra={"path": request.url.path})
    if not secret or not provided or not secrets.compare_digest(provided, secret):
        logger.warning("webhook.signature_invalid", extra={"path": request.url.path})
        metrics.increment("webhook.rejected", tags={"reason": "signature"})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


router = APIRouter(dependencies=[Depends(verify_automation_signature)])


class AutomationEnvelope(BaseModel):
    """Webhook body: ``{"lead": {...}, "event": ..., "received_at": ...}``.

    A bare top-level ``lead_id`` is accepted as well.
    """

    lead: AutomationLeadPayload | None = None
    lead_id: str | None = None
    event: str | None = None
    received_at: str | None = None

    def resolved_lead_id(self) -> str | None:
        if self.lead is not None and self.lead.id:
            return self.lead.id
        return self.lead_id


class AutomationAck(BaseModel):
    ok: bool = True
    lead_id: str
    # None when the lead was missing and nothing was written.
    status: str | None
    label: str | None
    message: str
    applied: bool


class LeadCreatedAck(BaseModel):
    ok: bool = True
    lead: Lead


async def _read_envelope(request: Request) -> AutomationEnvelope:
    try:
        body: Any = await request.json()
    except ValueError as exc:
        logger.warning("webhook.invalid_json", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON"
        ) from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    try:
        return AutomationEnvelope.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors(include_url=False)
        ) from exc


async def _apply(
    event: AutomationEvent, request: Request, engine: StatusTransitionEngine
) -> AutomationAck:
    envelope = await _read_envelope(request)
    lead_id = envelope.resolved_lead_id()
    if not is_identifier(lead_id):
        metrics.increment("webhook.rejected", tags={"reason": "lead_id", "event": event.value})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Lead ID inválido ou ausente"
        )
    try:
        outcome = await engine.apply_automation_event(lead_id, event)
    except PipelineError as exc:
        raise to_http_exception(
            exc, "webhook.apply_failed", lead_id=lead_id, event=event.value
        ) from exc
    metrics.increment(
        "webhook.accepted", tags={"event": event.value, "applied": outcome.applied}
    )
    return AutomationAck(
        lead_id=str(outcome.lead_id),
        status=outcome.status,
        label=outcome.label,
        message=outcome.message,
        applied=outcome.applied,
    )


@router.post("/lead-followup", response_model=AutomationAck)
async def lead_followup(
    request: Request, engine: StatusTransitionEngine = Depends(get_transition_engine)
) -> AutomationAck:
    """First automated e-mail went out."""
    return await _apply(AutomationEvent.FOLLOWUP_SENT, request, engine)


@router.post("/lead-responded", response_model=AutomationAck)
async def lead_responded(
    request: Request, engine: StatusTransitionEngine = Depends(get_transition_engine)
) -> AutomationAck:
    return await _apply(AutomationEvent.RESPONDED, request, engine)


@router.post("/lead-negotiation", response_model=AutomationAck)
async def lead_negotiation(
    request: Request, engine: StatusTransitionEngine = Depends(get_transition_engine)
) -> AutomationAck:
    return await _apply(AutomationEvent.NEGOTIATION_STARTED, request, engine)


@router.post("/lead-lost", response_model=AutomationAck)
async def lead_lost(
    request: Request, engine: StatusTransitionEngine = Depends(get_transition_engine)
) -> AutomationAck:
    return await _apply(AutomationEvent.LOST, request, engine)


@router.post("/lead-created", response_model=LeadCreatedAck)
async def lead_created(
    request: Request, directory: LeadDirectory = Depends(get_lead_directory)
) -> LeadCreatedAck:
    """Create or refresh a lead found by the automation engine, at the first stage."""
    envelope = await _read_envelope(request)
    try:
        lead = await directory.upsert_automation_lead(envelope.lead or AutomationLeadPayload())
    except PipelineError as exc:
        raise to_http_exception(exc, "webhook.lead_created_failed") from exc
    metrics.increment("webhook.accepted", tags={"event": "lead-created", "applied": True})
    return LeadCreatedAck(lead=lead)
