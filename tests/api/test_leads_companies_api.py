from uuid import uuid4


def _create_company(api) -> dict:
    response = api.post(
        "/api/companies",
        json={"nome": "Contabil Norte", "cidade": "Recife", "tamanho": "11_ate_20"},
    )
    assert response.status_code == 201
    return response.json()


def _create_lead(api, **overrides) -> dict:
    payload = {
        "nome": "Fabio Teixeira",
        "cargo": "Gerente",
        "linkedin_url": "https://www.linkedin.com/in/fabio-teixeira",
        "perfil": "gerente",
    }
    payload.update(overrides)
    response = api.post("/api/leads", json=payload)
    assert response.status_code == 201
    return response.json()


def test_created_lead_starts_at_first_stage(api):
    lead = _create_lead(api)

    assert lead["status"] == "novo"
    assert lead["role"] == "Gerente"


def test_lead_with_unknown_company_rejected(api):
    response = api.post(
        "/api/leads",
        json={
            "nome": "Fabio Teixeira",
            "linkedin_url": "https://www.linkedin.com/in/fabio-teixeira",
            "perfil": "gerente",
            "empresa_id": str(uuid4()),
        },
    )

    assert response.status_code == 400


def test_pipeline_returns_every_stage_in_order(api):
    lead = _create_lead(api)
    api.post("/api/status", json={"lead_id": lead["id"], "status": "fechado"})

    response = api.get("/api/leads/pipeline")

    assert response.status_code == 200
    columns = response.json()
    assert [column["stage"] for column in columns] == [
        "novo",
        "email_enviado",
        "aquecimento",
        "contatado",
        "interessado",
        "qualificado",
        "frio",
        "fechado",
        "perdido",
    ]
    counts = {column["stage"]: column["count"] for column in columns}
    assert counts["fechado"] == 1
    assert sum(counts.values()) == 1


def test_list_filters_by_stage_and_query(api):
    first = _create_lead(api)
    _create_lead(api, nome="Gabriela Nunes", cargo="CEO", perfil="ceo")
    api.post("/api/status", json={"lead_id": first["id"], "status": "contatado"})

    by_stage = api.get("/api/leads", params={"stage": "contatado"}).json()
    by_query = api.get("/api/leads", params={"q": "ceo"}).json()

    assert [lead["id"] for lead in by_stage] == [first["id"]]
    assert [lead["name"] for lead in by_query] == ["Gabriela Nunes"]
    assert api.get("/api/leads", params={"stage": "bogus"}).status_code == 400


def test_roles_are_distinct_and_sorted(api):
    _create_lead(api, cargo="Gerente")
    _create_lead(api, cargo="CFO")
    _create_lead(api, cargo="Gerente")

    assert api.get("/api/leads/roles").json() == ["CFO", "Gerente"]


def test_company_with_leads_cannot_be_deleted(api):
    company = _create_company(api)
    _create_lead(api, empresa_id=company["id"])

    response = api.delete(f"/api/companies/{company['id']}")

    assert response.status_code == 409


def test_update_missing_lead_returns_404(api):
    response = api.put(f"/api/leads/{uuid4()}", json={"nome": "Ninguem"})

    assert response.status_code == 404
