"""Lifecycle hooks for the configured pipeline store."""

from __future__ import annotations

import logging
from typing import Literal

from leadflow.config import settings
from leadflow.services.pipeline.sql_store import SQLModelPipelineStore
from leadflow.services.pipeline.store import get_pipeline_store

logger = logging.getLogger(__name__)

DatabaseStatus = Literal["memory", "connected", "unavailable"]


async def init_database() -> None:
    store = get_pipeline_store()
    if not isinstance(store, SQLModelPipelineStore):
        logger.info("database.in_memory", extra={"reason": "DATABASE_URL not set"})
        return
    if settings.db_auto_create_schema:
        await store.create_schema()
        logger.info("database.schema_created")
    logger.info("database.ready")


async def close_database() -> None:
    store = get_pipeline_store()
    if isinstance(store, SQLModelPipelineStore):
        await store.dispose()
        logger.info("database.disposed")


async def database_status() -> DatabaseStatus:
    """``memory`` when no database is configured, otherwise the result of a ping."""
    store = get_pipeline_store()
    if not isinstance(store, SQLModelPipelineStore):
        return "memory"
    return "connected" if await store.ping() else "unavailable"
