from __future__ import annotations

import pytest

from leadflow.models.email_template import EmailTemplate, EmailTemplateUpdate
from leadflow.services.pipeline import templates as templates_module
from leadflow.services.pipeline.errors import PipelineValidationError
from leadflow.services.pipeline.templates import EmailTemplateCatalog
from tests.helpers.metrics_stub import StubMetrics


@pytest.fixture
def catalog(store) -> EmailTemplateCatalog:
    return EmailTemplateCatalog(store)


@pytest.mark.asyncio
async def test_save_creates_template_active_by_default(catalog, monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(templates_module, "metrics", stub)

    saved = await catalog.save(
        EmailTemplateUpdate.model_validate(
            {"etapa": "day01", "assunto": "Primeiro contato", "corpo": "Olá {{nome}}"}
        )
    )

    assert (saved.stage, saved.subject, saved.active) == ("day01", "Primeiro contato", True)
    assert stub.counted("email_template.saved") == 1


@pytest.mark.asyncio
async def test_omitted_text_keeps_stored_value_but_active_resets(catalog):
    await catalog.save(
        EmailTemplateUpdate(stage="day03", subject="Retomando", body="Corpo", active=False)
    )

    saved = await catalog.save(EmailTemplateUpdate(stage="day03", subject="Novo assunto"))

    assert saved.subject == "Novo assunto"
    assert saved.body == "Corpo"
    assert saved.active is True


@pytest.mark.asyncio
@pytest.mark.parametrize("stage", ["day02", "DAY01", ""])
async def test_unknown_stage_rejected(catalog, store, stage):
    with pytest.raises(PipelineValidationError) as excinfo:
        await catalog.save(EmailTemplateUpdate(stage=stage, subject="x"))

    assert excinfo.value.code == "400_INVALID_STAGE"
    assert await store.list_email_templates() == []


@pytest.mark.asyncio
async def test_list_only_returns_cadence_stages_in_order(catalog, store):
    await store.upsert_email_template(EmailTemplate(stage="day07", subject="Último"))
    await store.upsert_email_template(EmailTemplate(stage="legacy", subject="Antigo"))
    await store.upsert_email_template(EmailTemplate(stage="day01", subject="Primeiro"))

    assert [item.stage for item in await catalog.list_templates()] == ["day01", "day07"]
