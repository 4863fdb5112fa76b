"""Realtime bridge: reconciles pushed row changes into identity-indexed caches.

Pushed rows may be partial, duplicated or out of order. Every mutation is a
merge by id against the cache as it is *now*; re-fetches are the only
suspension points, and a re-fetch that comes back older than what the cache
already holds is dropped.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError

from leadflow.models.interaction import Interaction
from leadflow.models.lead import Lead
from leadflow.observability.metrics import metrics
from leadflow.services.pipeline import vocabulary
from leadflow.services.pipeline.engine import StatusTransitionEngine, TransitionResult
from leadflow.services.pipeline.errors import PipelineError
from leadflow.services.pipeline.feed import (
    DELETE,
    INSERT,
    INTERACTIONS_TABLE,
    LEADS_TABLE,
    UPDATE,
    ChangeEvent,
    ChangeFeed,
    FeedSubscription,
    get_change_feed,
)
from leadflow.services.pipeline.identifiers import is_identifier, parse_identifier
from leadflow.services.pipeline.store import PipelineStore, get_pipeline_store
from leadflow.services.pipeline.view_model import PipelineColumn, group_by_stage

logger = logging.getLogger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# A lead row must carry its profile URL to enter the cache. Company-seeded
# leads without one are skipped here and only show up after the next load().
_LEAD_REQUIRED = ("id", "name", "linkedin_url", "niche", "created_at")
_INTERACTION_REQUIRED = ("id", "lead_id", "status")


class StreamState(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    LIVE = "live"


class IdentityIndex(Generic[_ModelT]):
    """Records keyed by id with insert-if-absent, merge-by-id and remove-by-id."""

    model: type[_ModelT]

    def __init__(self, items: Iterable[_ModelT] = ()) -> None:
        self._items: dict[UUID, _ModelT] = {}
        self.reset(items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def get(self, item_id: UUID) -> _ModelT | None:
        return self._items.get(item_id)

    def values(self) -> list[_ModelT]:
        return list(self._items.values())

    def reset(self, items: Iterable[_ModelT]) -> None:
        self._items = {}
        for item in items:
            self._items[item.id] = self._prepare(item)
        self._reorder()

    def insert(self, item: _ModelT) -> bool:
        """Add ``item`` unless its id is already present; returns whether it was added."""
        if item.id in self._items:
            return False
        self._items[item.id] = self._prepare(item)
        self._reorder()
        return True

    def replace(self, item: _ModelT) -> None:
        self._items[item.id] = self._prepare(item)
        self._reorder()

    def merge(self, item_id: UUID, patch: Mapping[str, Any]) -> _ModelT | None:
        """Shallow-merge ``patch`` into the cached record; absent keys keep their value."""
        current = self._items.get(item_id)
        if current is None:
            return None
        merged = self.model.model_validate(
            {**current.model_dump(), **_known_fields(self.model, patch), "id": item_id}
        )
        self._items[item_id] = self._prepare(merged)
        return self._items[item_id]

    def remove(self, item_id: UUID) -> bool:
        return self._items.pop(item_id, None) is not None

    def _prepare(self, item: _ModelT) -> _ModelT:
        return item

    def _reorder(self) -> None:
        return None


class LeadCache(IdentityIndex[Lead]):
    """Lead records with statuses always held in canonical form."""

    model = Lead

    def pipeline(self) -> list[PipelineColumn]:
        return group_by_stage(self._items.values())

    def _prepare(self, item: Lead) -> Lead:
        stage = vocabulary.normalize(item.status)
        return item if item.status == stage else item.model_copy(update={"status": stage})


class InteractionCache(IdentityIndex[Interaction]):
    """Interactions kept newest-first regardless of delivery order."""

    model = Interaction

    def for_lead(self, lead_id: UUID) -> list[Interaction]:
        return [item for item in self._items.values() if item.lead_id == lead_id]

    def _reorder(self) -> None:
        ordered = sorted(
            self._items.values(), key=lambda item: item.created_at or _EPOCH, reverse=True
        )
        self._items = {item.id: item for item in ordered}


def _known_fields(model: type[BaseModel], row: Mapping[str, Any]) -> dict[str, Any]:
    fields = model.model_fields
    return {
        key: value
        for key, value in row.items()
        if key in fields and not (value is None and fields[key].is_required())
    }


def _has_fields(row: Mapping[str, Any] | None, required: Iterable[str]) -> bool:
    if not isinstance(row, Mapping):
        return False
    if not is_identifier(row.get("id")):
        return False
    return all(row.get(name) not in (None, "") for name in required)


def _row_id(row: Mapping[str, Any] | None) -> UUID | None:
    if not isinstance(row, Mapping) or not is_identifier(row.get("id")):
        return None
    return UUID(str(row["id"]))


def _is_older(candidate: datetime | None, current: datetime | None) -> bool:
    return candidate is not None and current is not None and candidate < current


class RealtimeBridge:
    """Keeps a LeadCache and InteractionCache in step with a ChangeFeed.

    Usage::

        async with bridge.live():
            ...  # caches follow the feed until the block exits
    """

    def __init__(
        self,
        store: PipelineStore,
        feed: ChangeFeed,
        *,
        leads: LeadCache | None = None,
        interactions: InteractionCache | None = None,
    ) -> None:
        self._store = store
        self._feed = feed
        self.leads = leads if leads is not None else LeadCache()
        self.interactions = interactions if interactions is not None else InteractionCache()
        self._states: dict[str, StreamState] = {
            LEADS_TABLE: StreamState.IDLE,
            INTERACTIONS_TABLE: StreamState.IDLE,
        }
        self._subscriptions: dict[str, FeedSubscription] = {}

    def state(self, table: str) -> StreamState:
        return self._states[table]

    async def load(self) -> None:
        """Populate both caches from the store."""
        self.leads.reset(await self._store.list_leads())
        self.interactions.reset(await self._store.list_interactions())
        logger.info(
            "realtime.bridge.loaded",
            extra={"leads": len(self.leads), "interactions": len(self.interactions)},
        )

    async def subscribe(self) -> None:
        for table in (LEADS_TABLE, INTERACTIONS_TABLE):
            if self._states[table] is not StreamState.IDLE:
                continue
            self._states[table] = StreamState.SUBSCRIBING
            try:
                self._subscriptions[table] = await self._feed.subscribe([table], self.handle)
            except Exception:
                self._states[table] = StreamState.IDLE
                raise
            self._states[table] = StreamState.LIVE
            metrics.gauge("realtime.stream.live", 1, tags={"table": table})

    async def unsubscribe(self) -> None:
        for table in (LEADS_TABLE, INTERACTIONS_TABLE):
            subscription = self._subscriptions.pop(table, None)
            self._states[table] = StreamState.IDLE
            if subscription is not None:
                await self._feed.unsubscribe(subscription)
                metrics.gauge("realtime.stream.live", 0, tags={"table": table})

    @asynccontextmanager
    async def live(self) -> AsyncIterator[RealtimeBridge]:
        await self.subscribe()
        try:
            yield self
        finally:
            await self.unsubscribe()

    async def handle(self, event: ChangeEvent) -> None:
        """Entry point for the feed; events for streams that are not live are ignored."""
        if self._states.get(event.table) is not StreamState.LIVE:
            metrics.increment("realtime.event.ignored", tags={"table": event.table})
            return
        metrics.increment(
            "realtime.event.received", tags={"table": event.table, "kind": event.kind}
        )
        if event.table == LEADS_TABLE:
            await self._handle_lead(event)
        elif event.table == INTERACTIONS_TABLE:
            await self._handle_interaction(event)

    # Manual changes --------------------------------------------------------

    async def set_status(
        self, lead_id: UUID | str, stage: str, engine: StatusTransitionEngine
    ) -> TransitionResult:
        """Show ``stage`` in the cache straight away, then persist it through ``engine``.

        When the write fails the cached lead gets its previous status back,
        unless a pushed event has moved it in the meantime, and the error
        propagates to the caller.
        """
        resolved_id = parse_identifier(lead_id)
        cached = self.leads.get(resolved_id)
        optimistic = cached is not None and vocabulary.is_valid_stage(stage)
        if optimistic:
            self.leads.merge(resolved_id, {"status": stage})
        try:
            result = await engine.set_status(resolved_id, stage)
        except PipelineError as exc:
            current = self.leads.get(resolved_id)
            if optimistic and current is not None and current.status == stage:
                self.leads.merge(resolved_id, {"status": cached.status})
                logger.warning(
                    "realtime.optimistic.reverted",
                    extra={"lead_id": str(resolved_id), "status": cached.status, "code": exc.code},
                )
                metrics.increment("realtime.optimistic.reverted", tags={"table": LEADS_TABLE})
            raise
        if resolved_id in self.leads:
            self.leads.merge(
                resolved_id, {"status": result.status, "updated_at": result.lead.updated_at}
            )
        return result

    # Leads -----------------------------------------------------------------

    async def _handle_lead(self, event: ChangeEvent) -> None:
        if event.kind == INSERT:
            await self._lead_inserted(event.new)
        elif event.kind == UPDATE:
            await self._lead_updated(event.new)
        elif event.kind == DELETE:
            lead_id = _row_id(event.old)
            if lead_id is not None:
                self.leads.remove(lead_id)

    async def _lead_inserted(self, row: Mapping[str, Any] | None) -> None:
        if not _has_fields(row, _LEAD_REQUIRED):
            self._discard(LEADS_TABLE, INSERT)
            return
        lead_id = UUID(str(row["id"]))
        if lead_id in self.leads:
            metrics.increment("realtime.event.duplicate", tags={"table": LEADS_TABLE})
            return
        lead = await self._refetch_lead(lead_id)
        if not self._still_live(LEADS_TABLE):
            return
        if lead is None:
            lead = self._from_row(Lead, row)
            if lead is None:
                return
        self.leads.insert(lead)

    async def _lead_updated(self, row: Mapping[str, Any] | None) -> None:
        lead_id = _row_id(row)
        if lead_id is None:
            self._discard(LEADS_TABLE, UPDATE)
            return
        patch = dict(row)
        if "status" in patch:
            patch["status"] = vocabulary.normalize(patch["status"])
        self._merge_lead(lead_id, patch)

        fetched = await self._refetch_lead(lead_id)
        if fetched is None or not self._still_live(LEADS_TABLE):
            return
        current = self.leads.get(lead_id)
        if current is None:
            self.leads.insert(fetched)
        elif _is_older(fetched.updated_at, current.updated_at):
            logger.debug("realtime.refetch.stale", extra={"lead_id": str(lead_id)})
            metrics.increment("realtime.refetch.stale", tags={"table": LEADS_TABLE})
        else:
            self.leads.replace(fetched)

    def _merge_lead(self, lead_id: UUID, patch: Mapping[str, Any]) -> None:
        current = self.leads.get(lead_id)
        if current is None:
            return
        try:
            candidate = Lead.model_validate(
                {**current.model_dump(), **_known_fields(Lead, patch), "id": lead_id}
            )
        except ValidationError:
            self._discard(LEADS_TABLE, UPDATE)
            return
        if _is_older(candidate.updated_at, current.updated_at):
            metrics.increment("realtime.event.out_of_order", tags={"table": LEADS_TABLE})
            return
        self.leads.replace(candidate)

    async def _refetch_lead(self, lead_id: UUID) -> Lead | None:
        try:
            return await self._store.get_lead(lead_id)
        except PipelineError:
            logger.warning("realtime.refetch.failed", extra={"lead_id": str(lead_id)})
            metrics.increment("realtime.refetch.failed", tags={"table": LEADS_TABLE})
            return None

    # Interactions ----------------------------------------------------------

    async def _handle_interaction(self, event: ChangeEvent) -> None:
        if event.kind == INSERT:
            await self._interaction_inserted(event.new)
        elif event.kind == UPDATE:
            await self._interaction_updated(event.new)
        elif event.kind == DELETE:
            interaction_id = _row_id(event.old)
            if interaction_id is None:
                self._discard(INTERACTIONS_TABLE, DELETE)
                return
            self.interactions.remove(interaction_id)

    async def _interaction_inserted(self, row: Mapping[str, Any] | None) -> None:
        if not _has_fields(row, _INTERACTION_REQUIRED):
            self._discard(INTERACTIONS_TABLE, INSERT)
            return
        interaction_id = UUID(str(row["id"]))
        if interaction_id in self.interactions:
            metrics.increment("realtime.event.duplicate", tags={"table": INTERACTIONS_TABLE})
            return
        interaction = await self._refetch_interaction(interaction_id)
        if not self._still_live(INTERACTIONS_TABLE):
            return
        if interaction is None:
            interaction = self._from_row(Interaction, row)
            if interaction is None:
                return
        self.interactions.insert(interaction)

    async def _interaction_updated(self, row: Mapping[str, Any] | None) -> None:
        interaction_id = _row_id(row)
        if interaction_id is None:
            self._discard(INTERACTIONS_TABLE, UPDATE)
            return
        try:
            self.interactions.merge(interaction_id, row)
        except ValidationError:
            self._discard(INTERACTIONS_TABLE, UPDATE)
            return
        fetched = await self._refetch_interaction(interaction_id)
        if fetched is not None and self._still_live(INTERACTIONS_TABLE):
            self.interactions.replace(fetched)

    async def _refetch_interaction(self, interaction_id: UUID) -> Interaction | None:
        try:
            return await self._store.get_interaction(interaction_id)
        except PipelineError:
            logger.warning(
                "realtime.refetch.failed", extra={"interaction_id": str(interaction_id)}
            )
            metrics.increment("realtime.refetch.failed", tags={"table": INTERACTIONS_TABLE})
            return None

    # Helpers ---------------------------------------------------------------

    def _still_live(self, table: str) -> bool:
        return self._states[table] is StreamState.LIVE

    def _from_row(self, model: type[_ModelT], row: Mapping[str, Any]) -> _ModelT | None:
        try:
            return model.model_validate(_known_fields(model, row))
        except ValidationError:
            self._discard(model.__name__.lower(), "fallback")
            return None

    def _discard(self, table: str, kind: str) -> None:
        logger.debug("realtime.event.discarded", extra={"table": table, "kind": kind})
        metrics.increment("realtime.event.discarded", tags={"table": table, "kind": kind})


_BRIDGE_INSTANCE: RealtimeBridge | None = None


def get_realtime_bridge() -> RealtimeBridge:
    """Bridge over the configured store and the process-wide change feed."""
    global _BRIDGE_INSTANCE  # noqa: PLW0603
    if _BRIDGE_INSTANCE is None:
        _BRIDGE_INSTANCE = RealtimeBridge(get_pipeline_store(), get_change_feed())
    return _BRIDGE_INSTANCE
