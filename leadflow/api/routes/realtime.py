"""Live pipeline board served from the realtime bridge caches."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from leadflow.api.routes.leads import PipelineColumnResponse
from leadflow.services.pipeline.feed import INTERACTIONS_TABLE, LEADS_TABLE
from leadflow.services.pipeline.realtime import RealtimeBridge, get_realtime_bridge

router = APIRouter()


class RealtimeBoard(BaseModel):
    streams: dict[str, str]
    columns: list[PipelineColumnResponse]


@router.get("/realtime/pipeline", response_model=RealtimeBoard)
async def realtime_pipeline(
    bridge: RealtimeBridge = Depends(get_realtime_bridge),
) -> RealtimeBoard:
    """Cached columns as the change feed left them; no store round-trip."""
    return RealtimeBoard(
        streams={table: bridge.state(table).value for table in (LEADS_TABLE, INTERACTIONS_TABLE)},
        columns=[
            PipelineColumnResponse(
                stage=column.stage,
                label=column.label,
                color=column.color,
                icon=column.icon,
                count=column.count,
                leads=column.leads,
            )
            for column in bridge.leads.pipeline()
        ],
    )
