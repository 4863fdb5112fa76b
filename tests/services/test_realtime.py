from __future__ import annotations

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from leadflow.clients.automation import AutomationNotifier
from leadflow.config import settings
from leadflow.models.company import CompanyCreate
from leadflow.services.pipeline.directory import LeadDirectory
from leadflow.services.pipeline.engine import StatusTransitionEngine
from leadflow.services.pipeline.errors import PipelinePersistenceError, PipelineValidationError
from leadflow.services.pipeline.feed import (
    DELETE,
    INSERT,
    INTERACTIONS_TABLE,
    LEADS_TABLE,
    UPDATE,
    ChangeEvent,
    FeedSubscription,
    InMemoryChangeFeed,
    get_change_feed,
)
from leadflow.services.pipeline.realtime import RealtimeBridge, StreamState
from leadflow.services.pipeline.store import InMemoryPipelineStore, build_pipeline_store
from tests.helpers.factories import BASE_TIME, make_interaction, make_lead


class ScriptedLeadStore(InMemoryPipelineStore):
    """Answers get_lead from a script; each answer waits for its gate."""

    def __init__(self, answers):
        super().__init__()
        self._answers = list(answers)

    async def get_lead(self, lead_id):
        gate, lead = self._answers.pop(0)
        await gate.wait()
        return lead


class BrokenReadStore(InMemoryPipelineStore):
    async def get_lead(self, lead_id):
        raise PipelinePersistenceError("connection reset")

    async def get_interaction(self, interaction_id):
        raise PipelinePersistenceError("connection reset")


def _lead_row(lead, **overrides):
    row = lead.model_dump(mode="json")
    row.update(overrides)
    return row


class RecordingFeed:
    """Feed double that only tracks subscriptions; tests call bridge.handle directly."""

    def __init__(self):
        self.subscriptions = []

    async def subscribe(self, tables, handler):
        subscription = FeedSubscription(tables=frozenset(tables), handler=handler)
        self.subscriptions.append(subscription)
        return subscription

    async def unsubscribe(self, subscription):
        self.subscriptions.remove(subscription)


async def _live_bridge(store):
    bridge = RealtimeBridge(store, RecordingFeed())
    await bridge.subscribe()
    return bridge


@pytest.mark.asyncio
async def test_subscribe_and_teardown_states():
    feed = InMemoryChangeFeed()
    bridge = RealtimeBridge(InMemoryPipelineStore(), feed)
    assert bridge.state(LEADS_TABLE) is StreamState.IDLE

    with pytest.raises(RuntimeError):
        async with bridge.live():
            assert bridge.state(LEADS_TABLE) is StreamState.LIVE
            assert bridge.state(INTERACTIONS_TABLE) is StreamState.LIVE
            assert feed.subscriber_count == 2
            raise RuntimeError("view closed")

    assert bridge.state(LEADS_TABLE) is StreamState.IDLE
    assert bridge.state(INTERACTIONS_TABLE) is StreamState.IDLE
    assert feed.subscriber_count == 0


@pytest.mark.asyncio
async def test_events_before_subscribe_are_ignored():
    store = InMemoryPipelineStore()
    bridge = RealtimeBridge(store, InMemoryChangeFeed())
    lead = make_lead()

    await bridge.handle(ChangeEvent(LEADS_TABLE, INSERT, new=_lead_row(lead)))

    assert len(bridge.leads) == 0


@pytest.mark.asyncio
async def test_feed_keeps_caches_in_step_with_store():
    feed = InMemoryChangeFeed()
    store = InMemoryPipelineStore(feed=feed)
    engine = StatusTransitionEngine(store)
    existing = await store.insert_lead(make_lead(status="respondido"))
    bridge = RealtimeBridge(store, feed)
    await bridge.load()
    assert bridge.leads.get(existing.id).status == "interessado"

    async with bridge.live():
        fresh = await store.insert_lead(make_lead(name="Novo Contato"))
        await engine.apply_automation_event(fresh.id, "lead-negotiation")
        await feed.drain()

        assert bridge.leads.get(fresh.id).status == "qualificado"
        [entry] = bridge.interactions.for_lead(fresh.id)
        assert entry.status == "negociacao"
        assert entry.lead_name == "Novo Contato"
        columns = {column.stage: column for column in bridge.leads.pipeline()}
        assert [lead.id for lead in columns["qualificado"].leads] == [fresh.id]

        await engine.interactions.remove(entry.id)
        await feed.drain()
        assert bridge.interactions.for_lead(fresh.id) == []


@pytest.mark.asyncio
async def test_duplicate_insert_does_not_duplicate_entry():
    store = InMemoryPipelineStore()
    lead = await store.insert_lead(make_lead())
    entry = await store.insert_interaction(make_interaction(lead))
    bridge = await _live_bridge(store)
    await bridge.load()
    event = ChangeEvent(
        INTERACTIONS_TABLE, INSERT, new=entry.model_dump(mode="json", exclude={"lead_name"})
    )

    await bridge.handle(event)
    await bridge.handle(event)

    assert len(bridge.interactions.for_lead(lead.id)) == 1
    await bridge.unsubscribe()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "row",
    [
        None,
        {"name": "Sem id"},
        {"id": "not-a-uuid", "name": "X", "linkedin_url": "u", "niche": "ceo"},
        {"id": str(uuid4()), "name": "Sem perfil", "niche": "ceo", "created_at": "2024-05-01"},
    ],
)
async def test_malformed_lead_inserts_are_discarded(row):
    bridge = await _live_bridge(InMemoryPipelineStore())

    await bridge.handle(ChangeEvent(LEADS_TABLE, INSERT, new=row))

    assert len(bridge.leads) == 0


@pytest.mark.asyncio
async def test_insert_falls_back_to_pushed_row_when_refetch_fails():
    bridge = await _live_bridge(BrokenReadStore())
    lead = make_lead(status="em_contato")

    await bridge.handle(ChangeEvent(LEADS_TABLE, INSERT, new=_lead_row(lead)))

    cached = bridge.leads.get(lead.id)
    assert cached is not None
    assert cached.status == "contatado"


@pytest.mark.asyncio
async def test_insert_falls_back_when_row_vanished_before_refetch():
    bridge = await _live_bridge(InMemoryPipelineStore())
    lead = make_lead()
    entry = make_interaction(lead, status="respondeu")

    await bridge.handle(
        ChangeEvent(INTERACTIONS_TABLE, INSERT, new=entry.model_dump(mode="json"))
    )

    assert bridge.interactions.get(entry.id).status == "respondeu"


@pytest.mark.asyncio
async def test_interactions_are_kept_newest_first_regardless_of_delivery():
    bridge = await _live_bridge(BrokenReadStore())
    lead = make_lead()
    entries = [make_interaction(lead, minutes=minutes) for minutes in (10, 40, 0, 25)]

    for entry in entries:
        await bridge.handle(
            ChangeEvent(INTERACTIONS_TABLE, INSERT, new=entry.model_dump(mode="json"))
        )

    ordered = bridge.interactions.for_lead(lead.id)
    assert [entry.created_at for entry in ordered] == sorted(
        (entry.created_at for entry in entries), reverse=True
    )


@pytest.mark.asyncio
async def test_partial_update_normalizes_status_and_keeps_other_fields():
    bridge = await _live_bridge(BrokenReadStore())
    lead = make_lead(name="Ana Souza", status="novo")
    bridge.leads.insert(lead)

    await bridge.handle(
        ChangeEvent(LEADS_TABLE, UPDATE, new={"id": str(lead.id), "status": "respondido"})
    )

    cached = bridge.leads.get(lead.id)
    assert cached.status == "interessado"
    assert cached.name == "Ana Souza"
    assert cached.linkedin_url == lead.linkedin_url


@pytest.mark.asyncio
async def test_out_of_order_update_does_not_overwrite_newer_state():
    bridge = await _live_bridge(BrokenReadStore())
    lead = make_lead(status="novo")
    bridge.leads.insert(lead)
    newer = BASE_TIME + timedelta(minutes=2)
    older = BASE_TIME + timedelta(minutes=1)

    await bridge.handle(
        ChangeEvent(
            LEADS_TABLE,
            UPDATE,
            new={"id": str(lead.id), "status": "qualificado", "updated_at": newer.isoformat()},
        )
    )
    await bridge.handle(
        ChangeEvent(
            LEADS_TABLE,
            UPDATE,
            new={"id": str(lead.id), "status": "contatado", "updated_at": older.isoformat()},
        )
    )

    assert bridge.leads.get(lead.id).status == "qualificado"


@pytest.mark.asyncio
async def test_racing_refetches_settle_on_latest_server_state():
    lead = make_lead(status="contatado", updated_at=BASE_TIME)
    t1 = BASE_TIME + timedelta(seconds=1)
    t2 = BASE_TIME + timedelta(seconds=2)
    server_after_first = lead.model_copy(update={"status": "interessado", "updated_at": t1})
    server_final = lead.model_copy(update={"status": "qualificado", "updated_at": t2})
    slow_gate, fast_gate = asyncio.Event(), asyncio.Event()
    store = ScriptedLeadStore([(slow_gate, server_after_first), (fast_gate, server_final)])
    bridge = await _live_bridge(store)
    bridge.leads.insert(lead)

    first = asyncio.create_task(
        bridge.handle(
            ChangeEvent(
                LEADS_TABLE,
                UPDATE,
                new={"id": str(lead.id), "status": "interessado", "updated_at": t1.isoformat()},
            )
        )
    )
    second = asyncio.create_task(
        bridge.handle(
            ChangeEvent(
                LEADS_TABLE,
                UPDATE,
                new={"id": str(lead.id), "status": "qualificado", "updated_at": t2.isoformat()},
            )
        )
    )
    for _ in range(3):
        await asyncio.sleep(0)

    fast_gate.set()
    await second
    slow_gate.set()
    await first

    cached = bridge.leads.get(lead.id)
    assert cached.status == server_final.status
    assert cached.updated_at == server_final.updated_at


@pytest.mark.asyncio
async def test_interaction_delete_removes_entry():
    bridge = await _live_bridge(BrokenReadStore())
    lead = make_lead()
    entry = make_interaction(lead)
    bridge.interactions.insert(entry)

    await bridge.handle(ChangeEvent(INTERACTIONS_TABLE, DELETE, old={"id": str(entry.id)}))

    assert bridge.interactions.get(entry.id) is None


@pytest.mark.asyncio
async def test_handler_errors_do_not_stop_the_feed():
    feed = InMemoryChangeFeed()
    seen = []

    async def flaky(event):
        if event.kind == INSERT:
            raise ValueError("boom")
        seen.append(event.kind)

    subscription = await feed.subscribe([LEADS_TABLE], flaky)
    feed.publish(ChangeEvent(LEADS_TABLE, INSERT, new={}))
    feed.publish(ChangeEvent(LEADS_TABLE, UPDATE, new={}))
    feed.publish(ChangeEvent(INTERACTIONS_TABLE, UPDATE, new={}))
    await feed.drain()
    await feed.unsubscribe(subscription)

    assert seen == [UPDATE]


class StatusFailingStore(InMemoryPipelineStore):
    async def update_lead(self, lead_id, values):
        raise PipelinePersistenceError("leads table unavailable")


@pytest.mark.asyncio
async def test_manual_status_shows_at_once_and_reverts_when_write_fails(monkeypatch):
    store = StatusFailingStore()
    lead = await store.insert_lead(make_lead(status="contatado"))
    bridge = RealtimeBridge(store, RecordingFeed())
    await bridge.load()
    engine = StatusTransitionEngine(store)
    persist = engine.set_status
    seen_while_writing = []

    async def observed_set_status(lead_id, stage):
        seen_while_writing.append(bridge.leads.get(lead.id).status)
        return await persist(lead_id, stage)

    monkeypatch.setattr(engine, "set_status", observed_set_status)

    with pytest.raises(PipelinePersistenceError):
        await bridge.set_status(lead.id, "qualificado", engine)

    assert seen_while_writing == ["qualificado"]
    assert bridge.leads.get(lead.id).status == "contatado"


@pytest.mark.asyncio
async def test_manual_status_keeps_target_once_persisted():
    store = InMemoryPipelineStore()
    lead = await store.insert_lead(make_lead(status="novo"))
    bridge = RealtimeBridge(store, RecordingFeed())
    await bridge.load()

    result = await bridge.set_status(str(lead.id), "contatado", StatusTransitionEngine(store))

    cached = bridge.leads.get(lead.id)
    assert result.changed is True
    assert cached.status == "contatado"
    assert cached.updated_at == result.lead.updated_at


@pytest.mark.asyncio
async def test_manual_status_with_unknown_stage_leaves_cache_alone():
    store = InMemoryPipelineStore()
    lead = await store.insert_lead(make_lead(status="novo"))
    bridge = RealtimeBridge(store, RecordingFeed())
    await bridge.load()

    with pytest.raises(PipelineValidationError):
        await bridge.set_status(lead.id, "respondido", StatusTransitionEngine(store))

    assert bridge.leads.get(lead.id).status == "novo"


@pytest.mark.asyncio
async def test_company_seed_lead_without_profile_url_appears_after_reload():
    feed = InMemoryChangeFeed()
    store = InMemoryPipelineStore(feed=feed)
    directory = LeadDirectory(store, notifier=AutomationNotifier(webhook_url=""))
    bridge = RealtimeBridge(store, feed)

    async with bridge.live():
        company = await directory.create_company(
            CompanyCreate(name="Contabil Prime", size_bucket="21_ate_50")
        )
        await feed.drain()
        assert len(bridge.leads) == 0

    await bridge.load()
    [seed] = bridge.leads.values()
    assert seed.company_id == company.id
    assert seed.linkedin_url is None


@pytest.mark.asyncio
async def test_configured_store_publishes_to_the_process_feed(monkeypatch):
    monkeypatch.setattr(settings, "database_url", None)
    store = build_pipeline_store()
    bridge = RealtimeBridge(store, get_change_feed())

    async with bridge.live():
        lead = await store.insert_lead(make_lead())
        await get_change_feed().drain()

        assert lead.id in bridge.leads
