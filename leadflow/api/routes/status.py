"""Manual status changes coming from the dashboard."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from leadflow.api.errors import to_http_exception
from leadflow.models.lead import Lead
from leadflow.services.pipeline.engine import StatusTransitionEngine, get_transition_engine
from leadflow.services.pipeline.errors import PipelineError
from leadflow.services.pipeline.realtime import RealtimeBridge, get_realtime_bridge

router = APIRouter()
logger = logging.getLogger(__name__)


class StatusChangeRequest(BaseModel):
    lead_id: str = Field(min_length=1)
    status: str = Field(min_length=1, description="Canonical pipeline stage key.")


@router.post("/status", response_model=Lead)
async def change_status(
    payload: StatusChangeRequest,
    engine: StatusTransitionEngine = Depends(get_transition_engine),
    bridge: RealtimeBridge = Depends(get_realtime_bridge),
) -> Lead:
    """Move a lead to another stage; repeating the current stage is a no-op.

    The live board shows the new stage before the write lands and rolls back
    if it fails.
    """
    try:
        result = await bridge.set_status(payload.lead_id, payload.status, engine)
    except PipelineError as exc:
        raise to_http_exception(
            exc, "status.api_error", lead_id=payload.lead_id, status=payload.status
        ) from exc
    return result.lead.model_copy(update={"status": result.status})
