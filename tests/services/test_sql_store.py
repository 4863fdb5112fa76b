from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from leadflow.models.email_template import EmailTemplate
from leadflow.services.pipeline.engine import StatusTransitionEngine
from leadflow.services.pipeline.feed import DELETE, INSERT, UPDATE, InMemoryChangeFeed
from leadflow.services.pipeline.realtime import RealtimeBridge
from leadflow.services.pipeline.sql_store import SQLModelPipelineStore
from tests.helpers.factories import BASE_TIME, make_company, make_interaction, make_lead


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}"


async def _store(url: str, feed=None) -> SQLModelPipelineStore:
    store = SQLModelPipelineStore(url, feed=feed)
    await store.create_schema()
    return store


@pytest.mark.asyncio
async def test_lead_round_trip_and_filters(sqlite_url):
    store = await _store(sqlite_url)
    try:
        company = await store.insert_company(make_company())
        first = await store.insert_lead(make_lead(company_id=company.id, role="CFO"))
        await store.insert_lead(
            make_lead(niche="ceo", role="CFO", created_at=BASE_TIME + timedelta(hours=1))
        )
        await store.insert_lead(make_lead(niche="ceo", role=""))

        fetched = await store.get_lead(first.id)
        assert fetched.company_id == company.id
        assert fetched.created_at.tzinfo is not None
        assert [lead.id for lead in await store.list_leads(company_id=company.id)] == [first.id]
        assert len(await store.list_leads(niche="ceo")) == 2
        assert await store.list_roles() == ["CFO"]
        assert await store.count_company_leads(company.id) == 1
    finally:
        await store.dispose()


@pytest.mark.asyncio
async def test_update_missing_lead_returns_none(sqlite_url):
    store = await _store(sqlite_url)
    try:
        assert await store.update_lead(uuid4(), {"status": "novo"}) is None
        assert await store.delete_lead(uuid4()) is False
    finally:
        await store.dispose()


@pytest.mark.asyncio
async def test_interactions_join_lead_name_newest_first(sqlite_url):
    store = await _store(sqlite_url)
    try:
        lead = await store.insert_lead(make_lead(name="Joana Prado"))
        for minutes in (0, 20, 10):
            await store.insert_interaction(make_interaction(lead, minutes=minutes))

        entries = await store.list_interactions(lead.id)
        assert [entry.lead_name for entry in entries] == ["Joana Prado"] * 3
        assert entries[0].created_at > entries[1].created_at > entries[2].created_at
        assert await store.count_interactions(lead.id) == 3

        updated = await store.update_interaction(entries[0].id, {"note": "retornar sexta"})
        assert updated.note == "retornar sexta"
        assert updated.lead_name == "Joana Prado"
        assert await store.delete_interaction(entries[0].id) is True
        assert await store.get_interaction(entries[0].id) is None
    finally:
        await store.dispose()


@pytest.mark.asyncio
async def test_upsert_updates_existing_row(sqlite_url):
    store = await _store(sqlite_url)
    try:
        lead = await store.insert_lead(make_lead(status="qualificado"))

        refreshed = await store.upsert_lead(lead.model_copy(update={"status": "novo"}))

        assert refreshed.status == "novo"
        assert len(await store.list_leads()) == 1
    finally:
        await store.dispose()


@pytest.mark.asyncio
async def test_engine_runs_against_sql_store(sqlite_url):
    store = await _store(sqlite_url)
    try:
        engine = StatusTransitionEngine(store)
        lead = await store.insert_lead(make_lead(status="novo"))

        outcome = await engine.apply_automation_event(lead.id, "lead-responded")

        assert outcome.applied is True
        assert (await store.get_lead(lead.id)).status == "interessado"
        [entry] = await store.list_interactions(lead.id)
        assert (entry.status, entry.channel) == ("respondeu", "email")
    finally:
        await store.dispose()


class CollectingFeed:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


@pytest.mark.asyncio
async def test_lead_writes_publish_row_events_after_commit(sqlite_url):
    feed = CollectingFeed()
    store = await _store(sqlite_url, feed=feed)
    try:
        lead = await store.insert_lead(make_lead(status="novo"))
        await store.update_lead(lead.id, {"status": "contatado"})
        await store.update_lead(uuid4(), {"status": "contatado"})
        await store.upsert_lead(lead.model_copy(update={"name": "Ana S."}))
        await store.delete_lead(lead.id)
        await store.delete_lead(lead.id)

        assert [event.kind for event in feed.events] == [INSERT, UPDATE, UPDATE, DELETE]
        update = feed.events[1]
        assert (update.old["status"], update.new["status"]) == ("novo", "contatado")
        assert feed.events[-1].old["id"] == str(lead.id)
        assert feed.events[-1].new is None
    finally:
        await store.dispose()


@pytest.mark.asyncio
async def test_interaction_events_carry_row_data_only(sqlite_url):
    feed = CollectingFeed()
    store = await _store(sqlite_url, feed=feed)
    try:
        lead = await store.insert_lead(make_lead(name="Joana Prado"))
        created = await store.insert_interaction(make_interaction(lead))
        await store.delete_interaction(created.id)

        inserted, deleted = feed.events[1:]
        assert created.lead_name == "Joana Prado"
        assert "lead_name" not in inserted.new
        assert (deleted.kind, deleted.old["id"]) == (DELETE, str(created.id))
    finally:
        await store.dispose()


@pytest.mark.asyncio
async def test_bridge_follows_status_change_committed_to_sql(sqlite_url):
    feed = InMemoryChangeFeed()
    store = await _store(sqlite_url, feed=feed)
    try:
        lead = await store.insert_lead(make_lead(status="novo"))
        bridge = RealtimeBridge(store, feed)
        await bridge.load()

        async with bridge.live():
            await StatusTransitionEngine(store).set_status(lead.id, "qualificado")
            await feed.drain()
            assert bridge.leads.get(lead.id).status == "qualificado"

            interaction = await store.insert_interaction(make_interaction(lead))
            await feed.drain()
            assert interaction.id in bridge.interactions

            await store.delete_interaction(interaction.id)
            await feed.drain()
            assert interaction.id not in bridge.interactions
    finally:
        await store.dispose()


@pytest.mark.asyncio
async def test_email_templates_upsert_by_stage(sqlite_url):
    store = await _store(sqlite_url)
    try:
        await store.upsert_email_template(EmailTemplate(stage="day03", subject="Retomando"))
        await store.upsert_email_template(EmailTemplate(stage="day01", subject="Olá"))
        saved = await store.upsert_email_template(
            EmailTemplate(stage="day03", subject="Retomando contato", active=False)
        )

        assert saved.active is False
        templates = await store.list_email_templates()
        assert [(item.stage, item.subject) for item in templates] == [
            ("day01", "Olá"),
            ("day03", "Retomando contato"),
        ]
        assert templates[0].updated_at.tzinfo is not None
    finally:
        await store.dispose()
