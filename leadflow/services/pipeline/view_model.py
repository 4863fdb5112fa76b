"""Pure derivations from a lead collection into pipeline columns and filtered lists."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from leadflow.models.lead import Lead
from leadflow.services.pipeline import vocabulary


@dataclass(frozen=True)
class PipelineColumn:
    stage: str
    label: str
    color: str
    icon: str
    leads: list[Lead] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.leads)


def normalize_all(leads: Iterable[Lead]) -> list[Lead]:
    """Return copies whose ``status`` is always a canonical stage."""
    normalized: list[Lead] = []
    for lead in leads:
        stage = vocabulary.normalize(lead.status)
        if lead.status != stage:
            lead = lead.model_copy(update={"status": stage})
        normalized.append(lead)
    return normalized


def filter_by_stage(leads: Sequence[Lead], stage: str) -> list[Lead]:
    if stage == vocabulary.ALL_STAGES:
        return list(leads)
    return [lead for lead in leads if vocabulary.normalize(lead.status) == stage]


def search(leads: Sequence[Lead], query: str | None) -> list[Lead]:
    """Case-insensitive substring match over name, role, niche and profile URL."""
    needle = (query or "").strip().lower()
    if not needle:
        return list(leads)
    return [lead for lead in leads if needle in _haystack(lead)]


def group_by_stage(leads: Iterable[Lead]) -> list[PipelineColumn]:
    """One column per canonical stage in display order, empty columns included."""
    buckets: dict[str, list[Lead]] = {stage: [] for stage in vocabulary.STAGE_KEYS}
    for lead in normalize_all(leads):
        buckets[lead.status].append(lead)
    return [
        PipelineColumn(
            stage=info.key,
            label=info.label,
            color=info.color,
            icon=info.icon,
            leads=buckets[info.key],
        )
        for info in vocabulary.PIPELINE_STAGES
    ]


def _haystack(lead: Lead) -> str:
    fields = (lead.name, lead.role, lead.niche, lead.linkedin_url)
    return "\n".join(value.lower() for value in fields if value)
