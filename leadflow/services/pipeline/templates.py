"""Per-stage e-mail templates for the follow-up cadence."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from leadflow.models.email_template import TEMPLATE_STAGES, EmailTemplate, EmailTemplateUpdate
from leadflow.observability.metrics import metrics
from leadflow.services.pipeline.errors import PipelineValidationError
from leadflow.services.pipeline.store import PipelineStore, get_pipeline_store

logger = logging.getLogger(__name__)


class EmailTemplateCatalog:
    """Reads and upserts the day01/day03/day07 templates."""

    def __init__(self, store: PipelineStore | None = None) -> None:
        self._store = store or get_pipeline_store()

    async def list_templates(self) -> list[EmailTemplate]:
        templates = await self._store.list_email_templates()
        return [template for template in templates if template.stage in TEMPLATE_STAGES]

    async def save(self, payload: EmailTemplateUpdate) -> EmailTemplate:
        """Upsert by stage.

        Omitted subject or body keep the stored text; ``active`` is written on
        every save and falls back to True when omitted.
        """
        if payload.stage not in TEMPLATE_STAGES:
            raise PipelineValidationError("Etapa inválida", code="400_INVALID_STAGE")
        current = {
            template.stage: template for template in await self._store.list_email_templates()
        }.get(payload.stage)
        template = EmailTemplate(
            stage=payload.stage,
            subject=_pick(payload.subject, current.subject if current else ""),
            body=_pick(payload.body, current.body if current else ""),
            active=payload.active if payload.active is not None else True,
            updated_at=datetime.now(timezone.utc),
        )
        saved = await self._store.upsert_email_template(template)
        logger.info(
            "email_template.saved", extra={"stage": saved.stage, "active": saved.active}
        )
        metrics.increment("email_template.saved", tags={"stage": saved.stage})
        return saved


def _pick(value: str | None, fallback: str) -> str:
    return fallback if value is None else value


_CATALOG_INSTANCE: EmailTemplateCatalog | None = None


def get_template_catalog() -> EmailTemplateCatalog:
    global _CATALOG_INSTANCE  # noqa: PLW0603
    if _CATALOG_INSTANCE is None:
        _CATALOG_INSTANCE = EmailTemplateCatalog()
    return _CATALOG_INSTANCE
