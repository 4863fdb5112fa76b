"""Append-only contact history tied to leads."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

from leadflow.models.interaction import Interaction, InteractionUpdate
from leadflow.observability.metrics import metrics
from leadflow.services.pipeline import vocabulary
from leadflow.services.pipeline.errors import PipelineNotFoundError, PipelineValidationError
from leadflow.services.pipeline.identifiers import parse_identifier
from leadflow.services.pipeline.store import PipelineStore

logger = logging.getLogger(__name__)


class InteractionLog:
    """Validates and records interactions; never touches lead status."""

    def __init__(self, store: PipelineStore) -> None:
        self._store = store

    async def append(
        self,
        lead_id: UUID | str,
        status: str,
        channel: str | None = None,
        note: str | None = None,
        *,
        allow_automation_channel: bool = False,
    ) -> Interaction:
        resolved_id = parse_identifier(lead_id)
        self.validate(status, channel, allow_automation_channel=allow_automation_channel)
        if await self._store.get_lead(resolved_id) is None:
            raise PipelineValidationError(
                f"Lead {resolved_id} does not exist.", code="400_UNKNOWN_LEAD"
            )
        interaction = Interaction(
            id=uuid4(),
            lead_id=resolved_id,
            status=status,
            channel=channel or None,
            note=_clean_note(note),
            created_at=datetime.now(timezone.utc),
        )
        created = await self._store.insert_interaction(interaction)
        metrics.increment(
            "interactions.appended", tags={"status": status, "channel": channel or "none"}
        )
        logger.info(
            "interactions.appended",
            extra={"lead_id": str(resolved_id), "status": status, "channel": channel},
        )
        return created

    def validate(
        self, status: str, channel: str | None, *, allow_automation_channel: bool = False
    ) -> None:
        """Reject unknown tags and channels before any lookup happens."""
        _validate_tag(status)
        _validate_channel(channel, allow_automation=allow_automation_channel)

    async def list_for_lead(self, lead_id: UUID | str) -> list[Interaction]:
        return await self._store.list_interactions(parse_identifier(lead_id))

    async def list_all(self) -> list[Interaction]:
        return await self._store.list_interactions()

    async def update(self, interaction_id: UUID | str, patch: InteractionUpdate) -> Interaction:
        """Edit status, channel or note of an existing entry."""
        resolved_id = parse_identifier(interaction_id, field="interaction_id")
        _validate_tag(patch.status)
        _validate_channel(patch.channel, allow_automation=True)
        updated = await self._store.update_interaction(
            resolved_id,
            {
                "status": patch.status,
                "channel": patch.channel or None,
                "note": _clean_note(patch.note),
            },
        )
        if updated is None:
            raise PipelineNotFoundError(f"Interaction {resolved_id} not found.")
        logger.info("interactions.updated", extra={"interaction_id": str(resolved_id)})
        return updated

    async def remove(self, interaction_id: UUID | str) -> None:
        """Delete an entry; the owning lead keeps whatever status it has."""
        resolved_id = parse_identifier(interaction_id, field="interaction_id")
        removed = await self._store.delete_interaction(resolved_id)
        logger.info(
            "interactions.removed",
            extra={"interaction_id": str(resolved_id), "existed": removed},
        )


def _validate_tag(status: str) -> None:
    if not vocabulary.is_interaction_status(status):
        allowed = ", ".join(vocabulary.INTERACTION_STATUSES)
        raise PipelineValidationError(
            f"Invalid interaction status '{status}'. Expected one of: {allowed}.",
            code="400_INVALID_STATUS",
        )


def _validate_channel(channel: str | None, *, allow_automation: bool) -> None:
    if not channel:
        return
    allowed = vocabulary.INTERACTION_CHANNELS if allow_automation else vocabulary.USER_CHANNELS
    if channel not in allowed:
        raise PipelineValidationError(
            f"Invalid channel '{channel}'. Expected one of: {', '.join(allowed)}.",
            code="400_INVALID_CHANNEL",
        )


def _clean_note(note: str | None) -> str | None:
    if note is None:
        return None
    stripped = note.strip()
    return stripped or None
