"""Status transition engine: the one place that decides where a lead moves.

Three triggers feed it: a manual status set from the dashboard, a logged
interaction whose tag maps onto a stage, and an event posted by the
automation engine. Automation events write the lead status first and the
audit interaction second; the two writes are independent, so a failed audit
entry never undoes a status change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Final
from uuid import UUID

from leadflow.models.interaction import Interaction
from leadflow.models.lead import Lead
from leadflow.observability.metrics import metrics
from leadflow.services.pipeline import vocabulary
from leadflow.services.pipeline.errors import (
    PipelineError,
    PipelineNotFoundError,
    PipelineValidationError,
)
from leadflow.services.pipeline.identifiers import parse_identifier
from leadflow.services.pipeline.interactions import InteractionLog
from leadflow.services.pipeline.store import PipelineStore, get_pipeline_store

logger = logging.getLogger(__name__)


class AutomationEvent(str, Enum):
    """Outcomes reported by the automation engine, keyed by webhook slug."""

    FOLLOWUP_SENT = "lead-followup"
    RESPONDED = "lead-responded"
    NEGOTIATION_STARTED = "lead-negotiation"
    LOST = "lead-lost"


@dataclass(frozen=True)
class AutomationRule:
    target_stage: str
    interaction_status: str
    channel: str
    note: str
    message: str


AUTOMATION_RULES: Final[dict[AutomationEvent, AutomationRule]] = {
    AutomationEvent.FOLLOWUP_SENT: AutomationRule(
        target_stage="email_enviado",
        interaction_status="follow_up",
        channel="email",
        note="Follow-up automático inicial enviado pela automação.",
        message="Follow-up registrado com sucesso.",
    ),
    AutomationEvent.RESPONDED: AutomationRule(
        target_stage="interessado",
        interaction_status="respondeu",
        channel="email",
        note="O lead respondeu ao contato automático.",
        message="Lead marcado como interessado com sucesso.",
    ),
    AutomationEvent.NEGOTIATION_STARTED: AutomationRule(
        target_stage="qualificado",
        interaction_status="negociacao",
        channel=vocabulary.AUTOMATION_CHANNEL,
        note="Negociação iniciada automaticamente (lead em possível fechamento).",
        message="Negociação registrada e lead marcado como qualificado.",
    ),
    AutomationEvent.LOST: AutomationRule(
        target_stage="perdido",
        interaction_status="perdido",
        channel=vocabulary.AUTOMATION_CHANNEL,
        note="Marcado como perdido automaticamente pelo fluxo de automação.",
        message="Lead marcado como perdido com sucesso.",
    ),
}


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a manual status set."""

    lead: Lead
    previous_status: str
    status: str
    changed: bool

    @property
    def label(self) -> str:
        return vocabulary.label(self.status)


@dataclass(frozen=True)
class InteractionOutcome:
    """A recorded interaction and the lead status it left behind."""

    interaction: Interaction
    lead_status: str
    lead_status_updated: bool


@dataclass(frozen=True)
class AutomationOutcome:
    """``status`` is the stage written, or None when nothing was applied."""

    lead_id: UUID
    event: AutomationEvent
    status: str | None
    message: str
    applied: bool
    interaction: Interaction | None = None

    @property
    def label(self) -> str | None:
        return vocabulary.label(self.status) if self.status is not None else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StatusTransitionEngine:
    """Applies status transitions against a PipelineStore."""

    def __init__(
        self,
        store: PipelineStore | None = None,
        *,
        interaction_log: InteractionLog | None = None,
    ) -> None:
        self._store = store or get_pipeline_store()
        self._log = interaction_log or InteractionLog(self._store)

    @property
    def interactions(self) -> InteractionLog:
        return self._log

    async def set_status(self, lead_id: UUID | str, target_status: str) -> TransitionResult:
        """Move a lead to ``target_status``; repeating the current stage writes nothing."""
        resolved_id = parse_identifier(lead_id)
        if not vocabulary.is_valid_stage(target_status):
            allowed = ", ".join(vocabulary.STAGE_KEYS)
            raise PipelineValidationError(
                f"Invalid status '{target_status}'. Expected one of: {allowed}.",
                code="400_INVALID_STATUS",
            )
        lead = await self._require_lead(resolved_id)
        current = vocabulary.normalize(lead.status)
        if current == target_status:
            metrics.increment("pipeline.status.noop", tags={"trigger": "manual"})
            logger.info(
                "pipeline.status.noop",
                extra={"lead_id": str(resolved_id), "status": current, "trigger": "manual"},
            )
            return TransitionResult(
                lead=lead, previous_status=current, status=current, changed=False
            )

        updated = await self._write_status(lead, target_status, trigger="manual")
        if updated is None:
            raise PipelineNotFoundError(f"Lead {resolved_id} not found.")
        return TransitionResult(
            lead=updated, previous_status=current, status=target_status, changed=True
        )

    async def record_interaction(
        self,
        lead_id: UUID | str,
        interaction_status: str,
        channel: str | None = None,
        note: str | None = None,
    ) -> InteractionOutcome:
        """Log an interaction, then move the lead if the tag maps onto a stage."""
        resolved_id = parse_identifier(lead_id)
        self._log.validate(interaction_status, channel)
        lead = await self._require_lead(resolved_id)
        interaction = await self._log.append(resolved_id, interaction_status, channel, note)

        current = vocabulary.normalize(lead.status)
        target = vocabulary.interaction_to_lead_status(interaction_status)
        if target is None or target == current:
            return InteractionOutcome(
                interaction=interaction, lead_status=current, lead_status_updated=False
            )

        try:
            updated = await self._write_status(lead, target, trigger="interaction")
        except PipelineError:
            logger.exception(
                "pipeline.status.interaction_update_failed",
                extra={"lead_id": str(resolved_id), "interaction_status": interaction_status},
            )
            metrics.increment(
                "pipeline.status.secondary_failure", tags={"trigger": "interaction"}
            )
            return InteractionOutcome(
                interaction=interaction, lead_status=current, lead_status_updated=False
            )
        if updated is None:
            return InteractionOutcome(
                interaction=interaction, lead_status=current, lead_status_updated=False
            )
        return InteractionOutcome(
            interaction=interaction, lead_status=target, lead_status_updated=True
        )

    async def apply_automation_event(
        self, lead_id: UUID | str, event: AutomationEvent | str
    ) -> AutomationOutcome:
        """Apply one automation outcome: fixed status write, then a best-effort audit entry.

        A lead that no longer exists is reported with ``applied=False`` instead
        of raising, so the automation source does not keep retrying it.
        """
        resolved_id = parse_identifier(lead_id)
        try:
            event = AutomationEvent(event)
        except ValueError as exc:
            raise PipelineValidationError(
                f"Unknown automation event '{event}'.", code="400_INVALID_EVENT"
            ) from exc
        with metrics.timer("pipeline.automation.latency", tags={"event": event.value}) as timing:
            outcome = await self._apply_rule(resolved_id, event, AUTOMATION_RULES[event])
            timing["applied"] = outcome.applied
        return outcome

    async def _apply_rule(
        self, resolved_id: UUID, event: AutomationEvent, rule: AutomationRule
    ) -> AutomationOutcome:
        lead = await self._store.get_lead(resolved_id)
        if lead is not None and vocabulary.normalize(lead.status) != rule.target_stage:
            if await self._write_status(lead, rule.target_stage, trigger="automation") is None:
                lead = None
        if lead is None:
            logger.warning(
                "pipeline.automation.lead_missing",
                extra={"lead_id": str(resolved_id), "event": event.value},
            )
            metrics.increment("pipeline.automation.lead_missing", tags={"event": event.value})
            return AutomationOutcome(
                lead_id=resolved_id,
                event=event,
                status=None,
                message="Lead não encontrado; nenhuma alteração aplicada.",
                applied=False,
            )

        interaction: Interaction | None = None
        try:
            interaction = await self._log.append(
                resolved_id,
                rule.interaction_status,
                rule.channel,
                rule.note,
                allow_automation_channel=True,
            )
        except PipelineError:
            logger.exception(
                "pipeline.automation.audit_failed",
                extra={"lead_id": str(resolved_id), "event": event.value},
            )
            metrics.increment("pipeline.status.secondary_failure", tags={"trigger": "automation"})

        metrics.increment("pipeline.automation.applied", tags={"event": event.value})
        return AutomationOutcome(
            lead_id=resolved_id,
            event=event,
            status=rule.target_stage,
            message=rule.message,
            applied=True,
            interaction=interaction,
        )

    async def _require_lead(self, lead_id: UUID) -> Lead:
        lead = await self._store.get_lead(lead_id)
        if lead is None:
            raise PipelineNotFoundError(f"Lead {lead_id} not found.")
        return lead

    async def _write_status(self, lead: Lead, target: str, *, trigger: str) -> Lead | None:
        previous = vocabulary.normalize(lead.status)
        if vocabulary.is_regression(previous, target):
            # Allowed, but surfaced so unexpected backwards moves are visible.
            logger.warning(
                "pipeline.status.regression",
                extra={
                    "lead_id": str(lead.id),
                    "from": previous,
                    "to": target,
                    "trigger": trigger,
                },
            )
            metrics.increment("pipeline.status.regression", tags={"trigger": trigger})
        updated = await self._store.update_lead(lead.id, {"status": target, "updated_at": _now()})
        if updated is None:
            return None
        metrics.increment(
            "pipeline.status.updated", tags={"trigger": trigger, "status": target}
        )
        logger.info(
            "pipeline.status.updated",
            extra={"lead_id": str(lead.id), "from": previous, "to": target, "trigger": trigger},
        )
        return updated


_ENGINE_INSTANCE: StatusTransitionEngine | None = None


def get_transition_engine() -> StatusTransitionEngine:
    """Singleton accessor used by API routes."""
    global _ENGINE_INSTANCE  # noqa: PLW0603
    if _ENGINE_INSTANCE is None:
        _ENGINE_INSTANCE = StatusTransitionEngine()
    return _ENGINE_INSTANCE
