from __future__ import annotations

from fastapi import APIRouter, HTTPException

from leadflow.clients.automation import get_notifier
from leadflow.config import settings
from leadflow.core.database import database_status

router = APIRouter()


@router.get("")
async def health_check():
    """Liveness: the process is up."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check():
    """Readiness: the pipeline store answers and the automation wiring is reported."""
    database = await database_status()
    if database == "unavailable":
        raise HTTPException(status_code=503, detail="Database is not available")
    return {
        "status": "ready",
        "version": settings.app_version,
        "database": database,
        "automation": {
            "inbound": settings.automation_inbound_enabled,
            "outbound": get_notifier().enabled,
        },
    }
