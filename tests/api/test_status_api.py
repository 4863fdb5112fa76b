from uuid import uuid4


def _create_lead(api, **overrides) -> dict:
    payload = {
        "nome": "Bruno Lima",
        "cargo": "Sócio",
        "linkedin_url": "https://www.linkedin.com/in/bruno-lima",
        "perfil": "socio",
    }
    payload.update(overrides)
    response = api.post("/api/leads", json=payload)
    assert response.status_code == 201
    return response.json()


def test_change_status_moves_lead(api):
    lead = _create_lead(api)

    response = api.post("/api/status", json={"lead_id": lead["id"], "status": "contatado"})

    assert response.status_code == 200
    assert response.json()["status"] == "contatado"
    assert api.get(f"/api/leads/{lead['id']}").json()["status"] == "contatado"


def test_repeating_current_stage_is_noop(api):
    lead = _create_lead(api)

    response = api.post("/api/status", json={"lead_id": lead["id"], "status": "novo"})

    assert response.status_code == 200
    assert response.json()["updated_at"] is None


def test_unknown_stage_rejected(api):
    lead = _create_lead(api)

    response = api.post("/api/status", json={"lead_id": lead["id"], "status": "respondeu"})

    assert response.status_code == 400


def test_malformed_lead_id_rejected(api):
    response = api.post("/api/status", json={"lead_id": "not-a-uuid", "status": "novo"})

    assert response.status_code == 400


def test_missing_field_rejected(api):
    response = api.post("/api/status", json={"lead_id": str(uuid4())})

    assert response.status_code == 400


def test_unknown_lead_returns_404(api):
    response = api.post("/api/status", json={"lead_id": str(uuid4()), "status": "fechado"})

    assert response.status_code == 404
