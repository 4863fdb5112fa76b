from __future__ import annotations

import pytest

from leadflow.services.pipeline import vocabulary

HISTORICAL_VALUES = [
    None,
    "",
    "   ",
    "novo",
    "NOVO",
    " email_enviado ",
    "contato_realizado",
    "em_contato",
    "email_enviado_3dias",
    "email_enviado_7dias",
    "followup",
    "follow_up",
    "respondido",
    "respondeu",
    "negociacao",
    "Interessado",
    "perdido",
    "status-que-nunca-existiu",
]


def test_stage_sequence_and_labels_are_fixed():
    assert vocabulary.STAGE_KEYS == (
        "novo",
        "email_enviado",
        "aquecimento",
        "contatado",
        "interessado",
        "qualificado",
        "frio",
        "fechado",
        "perdido",
    )
    assert vocabulary.label("email_enviado") == "Contato realizado"
    assert vocabulary.label("contatado") == "Em contato"
    assert vocabulary.label("novo") == "Novo"


@pytest.mark.parametrize("raw", HISTORICAL_VALUES)
def test_normalize_is_idempotent(raw):
    once = vocabulary.normalize(raw)
    assert vocabulary.normalize(once) == once
    assert vocabulary.is_valid_stage(once)


@pytest.mark.parametrize("stage", vocabulary.STAGE_KEYS)
def test_canonical_stages_are_fixed_points(stage):
    assert vocabulary.normalize(stage) == stage


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("respondido", "interessado"),
        ("contato_realizado", "email_enviado"),
        ("em_contato", "contatado"),
        ("email_enviado_7dias", "email_enviado"),
        ("negociacao", "qualificado"),
        (None, "novo"),
        ("", "novo"),
        ("garbage", "novo"),
        ("  Qualificado ", "qualificado"),
    ],
)
def test_normalize_rewrites_legacy_values(raw, expected):
    assert vocabulary.normalize(raw) == expected


def test_label_echoes_unknown_key():
    assert vocabulary.label("sem_estagio") == "sem_estagio"


def test_is_valid_stage_rejects_aliases_and_non_strings():
    assert vocabulary.is_valid_stage("qualificado")
    assert not vocabulary.is_valid_stage("respondido")
    assert not vocabulary.is_valid_stage("Qualificado")
    assert not vocabulary.is_valid_stage(None)
    assert not vocabulary.is_valid_stage(3)


def test_interaction_mapping_matches_current_rules():
    assert vocabulary.interaction_to_lead_status("contatado") == "contatado"
    assert vocabulary.interaction_to_lead_status("respondeu") == "interessado"
    assert vocabulary.interaction_to_lead_status("follow_up") is None
    assert vocabulary.interaction_to_lead_status("negociacao") == "qualificado"
    assert vocabulary.interaction_to_lead_status("fechado") == "fechado"
    assert vocabulary.interaction_to_lead_status("perdido") == "perdido"
    assert set(vocabulary.INTERACTION_STATUSES) == set(vocabulary.INTERACTION_TO_LEAD_STATUS)


def test_regression_ignores_exit_stages():
    assert vocabulary.is_regression("qualificado", "novo")
    assert not vocabulary.is_regression("novo", "qualificado")
    assert not vocabulary.is_regression("qualificado", "perdido")
    assert not vocabulary.is_regression("frio", "contatado")
    assert vocabulary.is_regression("negociacao", "contatado")
