"""Lead status vocabulary, legacy alias normalisation and display metadata.

Every status string that may be found on a persisted lead (current stages,
values written by older automation flows, and values from earlier pipeline
layouts) resolves to exactly one canonical stage here. Nothing in this module
raises: rendering and transition code rely on always getting a stage back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

INITIAL_STAGE: Final = "novo"
ALL_STAGES: Final = "all"


@dataclass(frozen=True)
class StageInfo:
    """Display metadata for one canonical pipeline stage."""

    key: str
    label: str
    color: str
    icon: str
    terminal: bool = False


PIPELINE_STAGES: Final[tuple[StageInfo, ...]] = (
    StageInfo("novo", "Novo", "#3B82F6", "sparkles"),
    StageInfo("email_enviado", "Contato realizado", "#6366F1", "mail"),
    StageInfo("aquecimento", "Aquecimento", "#F97316", "flame"),
    StageInfo("contatado", "Em contato", "#F59E0B", "phone"),
    StageInfo("interessado", "Interessado", "#10B981", "message-circle"),
    StageInfo("qualificado", "Qualificado", "#22C55E", "badge-check"),
    StageInfo("frio", "Frio", "#64748B", "snowflake", terminal=True),
    StageInfo("fechado", "Fechado", "#8B5CF6", "trophy", terminal=True),
    StageInfo("perdido", "Perdido", "#EF4444", "x-circle", terminal=True),
)

STAGE_KEYS: Final[tuple[str, ...]] = tuple(stage.key for stage in PIPELINE_STAGES)
_STAGES_BY_KEY: Final[dict[str, StageInfo]] = {stage.key: stage for stage in PIPELINE_STAGES}
_STAGE_ORDER: Final[dict[str, int]] = {key: index for index, key in enumerate(STAGE_KEYS)}

# Exit stages a lead may move to from anywhere without counting as a regression.
EXIT_STAGES: Final = frozenset({"frio", "perdido"})

# Historical status values, mapped onto the stage that replaced them.
LEGACY_ALIASES: Final[dict[str, str]] = {
    # earlier dashboard keys
    "contato_realizado": "email_enviado",
    "em_contato": "contatado",
    # automation cadence markers (day 1 / day 3 / day 7 e-mails)
    "email_enviado_3dias": "email_enviado",
    "email_enviado_7dias": "email_enviado",
    "followup": "contatado",
    "follow_up": "contatado",
    # interaction tags that were written straight onto leads
    "respondido": "interessado",
    "respondeu": "interessado",
    "negociacao": "qualificado",
}

INTERACTION_STATUSES: Final[tuple[str, ...]] = (
    "contatado",
    "respondeu",
    "follow_up",
    "negociacao",
    "fechado",
    "perdido",
)

# Channels a user may pick when logging an interaction by hand.
USER_CHANNELS: Final[tuple[str, ...]] = ("linkedin", "email", "telefone", "reuniao")
AUTOMATION_CHANNEL: Final = "automacao_n8n"
INTERACTION_CHANNELS: Final[tuple[str, ...]] = (*USER_CHANNELS, AUTOMATION_CHANNEL)

# None means "log the interaction, leave the lead where it is".
INTERACTION_TO_LEAD_STATUS: Final[dict[str, str | None]] = {
    "contatado": "contatado",
    "respondeu": "interessado",
    "follow_up": None,
    "negociacao": "qualificado",
    "fechado": "fechado",
    "perdido": "perdido",
}


def normalize(raw: str | None) -> str:
    """Resolve any raw lead status onto a canonical stage key."""
    if not isinstance(raw, str):
        return INITIAL_STAGE
    value = raw.strip().lower()
    if not value:
        return INITIAL_STAGE
    if value in _STAGES_BY_KEY:
        return value
    return LEGACY_ALIASES.get(value, INITIAL_STAGE)


def label(stage: str) -> str:
    """Return the display label for a canonical stage, echoing unknown keys."""
    info = _STAGES_BY_KEY.get(stage)
    return info.label if info else stage


def stage_info(stage: str) -> StageInfo | None:
    return _STAGES_BY_KEY.get(stage)


def is_valid_stage(value: object) -> bool:
    """Strict membership test; legacy aliases are not valid transition targets."""
    return isinstance(value, str) and value in _STAGES_BY_KEY


def stage_position(stage: str) -> int:
    return _STAGE_ORDER.get(normalize(stage), 0)


def is_regression(current: str | None, target: str) -> bool:
    """True when moving to ``target`` goes backwards in the pipeline."""
    current_stage = normalize(current)
    if target in EXIT_STAGES or current_stage in EXIT_STAGES:
        return False
    return stage_position(target) < stage_position(current_stage)


def is_interaction_status(value: object) -> bool:
    return isinstance(value, str) and value in INTERACTION_TO_LEAD_STATUS


def interaction_to_lead_status(interaction_status: str) -> str | None:
    return INTERACTION_TO_LEAD_STATUS.get(interaction_status)
