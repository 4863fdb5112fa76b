"""SQLModel-backed pipeline store persisting to Postgres/Supabase."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, text, update
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from leadflow.config import settings
from leadflow.models.company import Company
from leadflow.models.interaction import Interaction
from leadflow.models.lead import Lead
from leadflow.models.email_template import EmailTemplate
from leadflow.models.records import (
    CompanyRecord,
    EmailTemplateRecord,
    InteractionRecord,
    LeadRecord,
)
from leadflow.observability.metrics import metrics
from leadflow.services.pipeline.errors import PipelinePersistenceError
from leadflow.services.pipeline.feed import (
    DELETE,
    INSERT,
    INTERACTIONS_TABLE,
    LEADS_TABLE,
    UPDATE,
    ChangeFeed,
    row_event,
)
from leadflow.services.pipeline.store import PipelineStore

logger = logging.getLogger(__name__)


class SQLModelPipelineStore(PipelineStore):
    """Async SQLAlchemy store; every database failure surfaces as PipelinePersistenceError.

    Lead and interaction writes are published to ``feed`` once committed, so
    the realtime bridge sees the same row events the hosted database pushes.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SQLModelPipelineStore.")

        parsed_url = make_url(database_url)
        drivername = parsed_url.drivername
        is_sqlite = drivername.startswith("sqlite")
        pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
        pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
        engine_kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": not is_sqlite}
        if not is_sqlite:
            engine_kwargs["pool_size"] = pool_min
            engine_kwargs["max_overflow"] = max(pool_max - pool_min, 0)
            engine_kwargs["pool_recycle"] = 300

        self._engine = create_async_engine(coerce_async_url(parsed_url), **engine_kwargs)
        self._sessions = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        self._metrics_tags = {"backend": _resolve_metrics_tag(parsed_url, drivername)}
        self._feed = feed

    async def create_schema(self) -> None:
        """Create tables directly; production deployments use the Alembic migrations."""
        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    async def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            async with self._engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("pipeline.persistence.ping_failed", extra=self._metrics_tags)
            return False
        return True

    # Leads -----------------------------------------------------------------

    async def get_lead(self, lead_id: UUID) -> Lead | None:
        async with self._session("get_lead") as session:
            record = await session.get(LeadRecord, lead_id)
            return record.to_domain() if record else None

    async def list_leads(
        self, *, niche: str | None = None, company_id: UUID | None = None
    ) -> list[Lead]:
        statement = select(LeadRecord).order_by(LeadRecord.created_at.desc())
        if niche is not None:
            statement = statement.where(LeadRecord.niche == niche)
        if company_id is not None:
            statement = statement.where(LeadRecord.company_id == company_id)
        async with self._session("list_leads") as session:
            result = await session.execute(statement)
            return [record.to_domain() for record in result.scalars().all()]

    async def insert_lead(self, lead: Lead) -> Lead:
        record = LeadRecord.from_domain(lead)
        async with self._session("insert_lead") as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            self._persisted("leads", "insert")
            created = record.to_domain()
        self._publish(LEADS_TABLE, INSERT, new=created)
        return created

    async def update_lead(self, lead_id: UUID, values: Mapping[str, Any]) -> Lead | None:
        async with self._session("update_lead") as session:
            previous = await session.get(LeadRecord, lead_id)
            old = previous.to_domain() if previous else None
            result = await session.execute(
                update(LeadRecord).where(LeadRecord.id == lead_id).values(**dict(values))
            )
            await session.commit()
            if not result.rowcount:
                return None
            record = await session.get(LeadRecord, lead_id, populate_existing=True)
            self._persisted("leads", "update")
            updated = record.to_domain() if record else None
        if updated is not None:
            self._publish(LEADS_TABLE, UPDATE, new=updated, old=old)
        return updated

    async def upsert_lead(self, lead: Lead) -> Lead:
        async with self._session("upsert_lead") as session:
            existing = await session.get(LeadRecord, lead.id)
            old = existing.to_domain() if existing else None
            if existing is None:
                record = LeadRecord.from_domain(lead)
                session.add(record)
            else:
                for key, value in lead.model_dump(exclude={"id", "created_at"}).items():
                    setattr(existing, key, value)
                record = existing
            await session.commit()
            await session.refresh(record)
            self._persisted("leads", "upsert")
            saved = record.to_domain()
        self._publish(LEADS_TABLE, INSERT if old is None else UPDATE, new=saved, old=old)
        return saved

    async def delete_lead(self, lead_id: UUID) -> bool:
        async with self._session("delete_lead") as session:
            existing = await session.get(LeadRecord, lead_id)
            old = existing.to_domain() if existing else None
            result = await session.execute(delete(LeadRecord).where(LeadRecord.id == lead_id))
            await session.commit()
        if not result.rowcount:
            return False
        self._publish(LEADS_TABLE, DELETE, old=old)
        return True

    async def count_interactions(self, lead_id: UUID) -> int:
        statement = (
            select(func.count())
            .select_from(InteractionRecord)
            .where(InteractionRecord.lead_id == lead_id)
        )
        async with self._session("count_interactions") as session:
            return int((await session.execute(statement)).scalar_one())

    async def list_roles(self) -> list[str]:
        statement = (
            select(LeadRecord.role)
            .where(LeadRecord.role.is_not(None), LeadRecord.role != "")
            .distinct()
            .order_by(LeadRecord.role)
        )
        async with self._session("list_roles") as session:
            return [role for role in (await session.execute(statement)).scalars().all() if role]

    # Companies -------------------------------------------------------------

    async def get_company(self, company_id: UUID) -> Company | None:
        async with self._session("get_company") as session:
            record = await session.get(CompanyRecord, company_id)
            return record.to_domain() if record else None

    async def list_companies(
        self, *, name: str | None = None, size_bucket: str | None = None
    ) -> list[Company]:
        statement = select(CompanyRecord).order_by(CompanyRecord.created_at.desc())
        if name:
            statement = statement.where(CompanyRecord.name.ilike(f"%{name}%"))
        if size_bucket:
            statement = statement.where(CompanyRecord.size_bucket == size_bucket)
        async with self._session("list_companies") as session:
            result = await session.execute(statement)
            return [record.to_domain() for record in result.scalars().all()]

    async def insert_company(self, company: Company) -> Company:
        record = CompanyRecord.from_domain(company)
        async with self._session("insert_company") as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            self._persisted("companies", "insert")
            return record.to_domain()

    async def update_company(
        self, company_id: UUID, values: Mapping[str, Any]
    ) -> Company | None:
        async with self._session("update_company") as session:
            result = await session.execute(
                update(CompanyRecord).where(CompanyRecord.id == company_id).values(**dict(values))
            )
            await session.commit()
            if not result.rowcount:
                return None
            record = await session.get(CompanyRecord, company_id, populate_existing=True)
            self._persisted("companies", "update")
            return record.to_domain() if record else None

    async def delete_company(self, company_id: UUID) -> bool:
        async with self._session("delete_company") as session:
            result = await session.execute(
                delete(CompanyRecord).where(CompanyRecord.id == company_id)
            )
            await session.commit()
            return bool(result.rowcount)

    async def count_company_leads(self, company_id: UUID) -> int:
        statement = (
            select(func.count()).select_from(LeadRecord).where(LeadRecord.company_id == company_id)
        )
        async with self._session("count_company_leads") as session:
            return int((await session.execute(statement)).scalar_one())

    # Interactions ----------------------------------------------------------

    async def insert_interaction(self, interaction: Interaction) -> Interaction:
        record = InteractionRecord.from_domain(interaction)
        async with self._session("insert_interaction") as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            lead = await session.get(LeadRecord, record.lead_id)
            self._persisted("interactions", "insert")
            created = record.to_domain(lead_name=lead.name if lead else None)
        self._publish(INTERACTIONS_TABLE, INSERT, new=created)
        return created

    async def get_interaction(self, interaction_id: UUID) -> Interaction | None:
        statement = (
            select(InteractionRecord, LeadRecord.name)
            .join(LeadRecord, LeadRecord.id == InteractionRecord.lead_id, isouter=True)
            .where(InteractionRecord.id == interaction_id)
        )
        async with self._session("get_interaction") as session:
            row = (await session.execute(statement)).first()
            if row is None:
                return None
            record, lead_name = row
            return record.to_domain(lead_name=lead_name)

    async def list_interactions(self, lead_id: UUID | None = None) -> list[Interaction]:
        statement = (
            select(InteractionRecord, LeadRecord.name)
            .join(LeadRecord, LeadRecord.id == InteractionRecord.lead_id, isouter=True)
            .order_by(InteractionRecord.created_at.desc())
        )
        if lead_id is not None:
            statement = statement.where(InteractionRecord.lead_id == lead_id)
        async with self._session("list_interactions") as session:
            rows = (await session.execute(statement)).all()
            return [record.to_domain(lead_name=lead_name) for record, lead_name in rows]

    async def update_interaction(
        self, interaction_id: UUID, values: Mapping[str, Any]
    ) -> Interaction | None:
        old = await self.get_interaction(interaction_id)
        async with self._session("update_interaction") as session:
            result = await session.execute(
                update(InteractionRecord)
                .where(InteractionRecord.id == interaction_id)
                .values(**dict(values))
            )
            await session.commit()
            if not result.rowcount:
                return None
        self._persisted("interactions", "update")
        updated = await self.get_interaction(interaction_id)
        if updated is not None:
            self._publish(INTERACTIONS_TABLE, UPDATE, new=updated, old=old)
        return updated

    async def delete_interaction(self, interaction_id: UUID) -> bool:
        old = await self.get_interaction(interaction_id)
        async with self._session("delete_interaction") as session:
            result = await session.execute(
                delete(InteractionRecord).where(InteractionRecord.id == interaction_id)
            )
            await session.commit()
        if not result.rowcount:
            return False
        self._publish(INTERACTIONS_TABLE, DELETE, old=old)
        return True

    # E-mail templates ------------------------------------------------------

    async def list_email_templates(self) -> list[EmailTemplate]:
        statement = select(EmailTemplateRecord).order_by(EmailTemplateRecord.stage)
        async with self._session("list_email_templates") as session:
            result = await session.execute(statement)
            return [record.to_domain() for record in result.scalars().all()]

    async def upsert_email_template(self, template: EmailTemplate) -> EmailTemplate:
        async with self._session("upsert_email_template") as session:
            record = await session.merge(EmailTemplateRecord.from_domain(template))
            await session.commit()
            await session.refresh(record)
            self._persisted("email_templates", "upsert")
            return record.to_domain()

    # Helpers ---------------------------------------------------------------

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        tags = {"operation": operation, **self._metrics_tags}
        with metrics.timer("pipeline.store.latency", tags=tags):
            async with self._sessions() as session:
                try:
                    yield session
                except IntegrityError as exc:
                    await session.rollback()
                    logger.warning("pipeline.persistence.conflict", extra=tags)
                    raise PipelinePersistenceError(
                        f"Integrity violation during {operation}.", code="409_CONFLICT"
                    ) from exc
                except SQLAlchemyError as exc:
                    await session.rollback()
                    logger.exception("pipeline.persistence.error", extra=tags)
                    metrics.increment("pipeline.store.error", tags=tags)
                    raise PipelinePersistenceError(f"Database failure during {operation}.") from exc

    def _persisted(self, table: str, kind: str) -> None:
        metrics.increment(
            "pipeline.store.write", tags={"table": table, "kind": kind, **self._metrics_tags}
        )

    def _publish(
        self,
        table: str,
        kind: str,
        *,
        new: Lead | Interaction | None = None,
        old: Lead | Interaction | None = None,
    ) -> None:
        if self._feed is not None:
            self._feed.publish(row_event(table, kind, new=new, old=old))


def coerce_async_url(url: URL) -> str:
    """Convert sync connection strings into async SQLAlchemy URLs."""
    drivername = url.drivername
    if drivername in {"postgresql", "postgres"} or drivername.endswith("+psycopg2"):
        drivername = "postgresql+asyncpg"
    elif drivername == "sqlite":
        drivername = "sqlite+aiosqlite"
    async_url = url.set(drivername=drivername)
    if drivername.startswith("postgresql") and async_url.query:
        query = dict(async_url.query)
        sslmode = query.pop("sslmode", None)
        if sslmode and "ssl" not in query:
            query["ssl"] = sslmode
        async_url = async_url.set(query=query)
    return async_url.render_as_string(hide_password=False)


def _resolve_metrics_tag(url: URL, drivername: str) -> str:
    host = (url.host or "").lower()
    if "supabase.co" in host:
        return "supabase"
    if drivername.startswith("sqlite"):
        return "sqlite"
    return "postgres"
