import pytest
from fastapi.testclient import TestClient

from leadflow.clients.automation import AutomationNotifier
from leadflow.config import settings
from leadflow.main import app
from leadflow.services.pipeline.directory import LeadDirectory, get_lead_directory
from leadflow.services.pipeline.engine import StatusTransitionEngine, get_transition_engine
from leadflow.services.pipeline.store import InMemoryPipelineStore
from tests.helpers.factories import WEBHOOK_SECRET


@pytest.fixture
def client():
    """Create test client; lifespan is not run so no database is touched."""
    return TestClient(app)


@pytest.fixture
def store() -> InMemoryPipelineStore:
    return InMemoryPipelineStore()


@pytest.fixture
def notifier() -> AutomationNotifier:
    return AutomationNotifier(webhook_url="")


@pytest.fixture
def engine(store) -> StatusTransitionEngine:
    return StatusTransitionEngine(store)


@pytest.fixture
def directory(store, notifier) -> LeadDirectory:
    return LeadDirectory(store, notifier=notifier)


@pytest.fixture
def api(client, engine, directory, monkeypatch):
    """Test client wired to a fresh in-memory store."""
    monkeypatch.setattr(settings, "automation_shared_secret", WEBHOOK_SECRET)
    app.dependency_overrides[get_transition_engine] = lambda: engine
    app.dependency_overrides[get_lead_directory] = lambda: directory
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_transition_engine, None)
        app.dependency_overrides.pop(get_lead_directory, None)
