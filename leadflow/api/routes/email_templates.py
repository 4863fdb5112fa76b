"""Cadence e-mail template endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from leadflow.api.errors import to_http_exception
from leadflow.models.email_template import EmailTemplate, EmailTemplateUpdate
from leadflow.services.pipeline.errors import PipelineError
from leadflow.services.pipeline.templates import EmailTemplateCatalog, get_template_catalog

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/email-templates", response_model=list[EmailTemplate])
async def list_email_templates(
    catalog: EmailTemplateCatalog = Depends(get_template_catalog),
) -> list[EmailTemplate]:
    """Stored templates ordered by stage; stages never saved are absent."""
    try:
        return await catalog.list_templates()
    except PipelineError as exc:
        raise to_http_exception(exc, "email_templates.api_error") from exc


@router.put("/email-templates")
async def save_email_template(
    payload: EmailTemplateUpdate,
    catalog: EmailTemplateCatalog = Depends(get_template_catalog),
) -> dict[str, Any]:
    try:
        saved = await catalog.save(payload)
    except PipelineError as exc:
        raise to_http_exception(exc, "email_templates.api_error", stage=payload.stage) from exc
    return {"ok": True, "data": saved}
