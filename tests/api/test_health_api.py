def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_readiness_reports_in_memory_store(api):
    response = api.get("/health/ready")

    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "memory"
    assert body["automation"]["inbound"] is True


def test_readiness_fails_when_database_unreachable(client, monkeypatch):
    async def unavailable():
        return "unavailable"

    monkeypatch.setattr("leadflow.api.routes.health.database_status", unavailable)

    response = client.get("/health/ready")

    assert response.status_code == 503
