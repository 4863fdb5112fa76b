from __future__ import annotations

import itertools

import pytest

from leadflow.services.pipeline import vocabulary, view_model
from tests.helpers.factories import make_lead


@pytest.fixture
def leads():
    return [
        make_lead(name="Ana Souza", role="CFO", niche="diretor", status="novo"),
        make_lead(name="Bruno Lima", role="Contador", niche="contador", status="respondido"),
        make_lead(
            name="Carla Dias",
            role=None,
            niche="socio",
            status="qualificado",
            linkedin_url="https://www.linkedin.com/in/carla-fiscal",
        ),
        make_lead(name="Diego Alves", role="Gerente", niche="gerente", status=None),
        make_lead(name="Eva Rocha", role="CEO", niche="ceo", status="contato_realizado"),
    ]


def test_group_by_stage_returns_every_stage_even_when_empty():
    columns = view_model.group_by_stage([])

    assert [column.stage for column in columns] == list(vocabulary.STAGE_KEYS)
    assert all(column.leads == [] for column in columns)
    assert columns[1].label == "Contato realizado"


def test_group_by_stage_places_normalized_leads(leads):
    columns = {column.stage: column for column in view_model.group_by_stage(leads)}

    assert len(columns) == 9
    assert [lead.name for lead in columns["novo"].leads] == ["Ana Souza", "Diego Alves"]
    assert [lead.name for lead in columns["interessado"].leads] == ["Bruno Lima"]
    assert [lead.name for lead in columns["email_enviado"].leads] == ["Eva Rocha"]
    assert columns["perdido"].count == 0


def test_lead_without_status_lands_in_novo():
    lead = make_lead(status=None)
    columns = view_model.group_by_stage([lead])

    assert vocabulary.normalize(lead.status) == "novo"
    assert columns[0].stage == "novo"
    assert columns[0].leads[0].id == lead.id


def test_normalize_all_rewrites_statuses(leads):
    normalized = view_model.normalize_all(leads)

    assert [lead.status for lead in normalized] == [
        "novo",
        "interessado",
        "qualificado",
        "novo",
        "email_enviado",
    ]
    assert leads[1].status == "respondido"


def test_filter_by_stage_all_is_identity(leads):
    assert view_model.filter_by_stage(leads, "all") == leads
    assert [lead.name for lead in view_model.filter_by_stage(leads, "novo")] == [
        "Ana Souza",
        "Diego Alves",
    ]


def test_search_matches_name_role_niche_and_profile_url(leads):
    assert [lead.name for lead in view_model.search(leads, "bruno")] == ["Bruno Lima"]
    assert [lead.name for lead in view_model.search(leads, "GERENTE")] == ["Diego Alves"]
    assert [lead.name for lead in view_model.search(leads, "socio")] == ["Carla Dias"]
    assert [lead.name for lead in view_model.search(leads, "carla-fiscal")] == ["Carla Dias"]
    assert view_model.search(leads, "") == leads
    assert view_model.search(leads, None) == leads


def test_search_and_stage_filter_commute(leads):
    queries = ["", "a", "ceo", "linkedin", "zzz"]
    stages = [vocabulary.ALL_STAGES, *vocabulary.STAGE_KEYS]
    for query, stage in itertools.product(queries, stages):
        left = view_model.filter_by_stage(view_model.search(leads, query), stage)
        right = view_model.search(view_model.filter_by_stage(leads, stage), query)
        assert left == right, (query, stage)
