import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from leadflow.api.errors import map_error_code
from leadflow.api.routes import (
    companies,
    email_templates,
    health,
    interactions,
    leads,
    realtime,
    webhooks,
)
from leadflow.api.routes import status as status_routes
from leadflow.clients.automation import get_notifier
from leadflow.config import settings
from leadflow.core.database import close_database, init_database
from leadflow.observability.metrics import metrics
from leadflow.services.pipeline.errors import PipelineError
from leadflow.services.pipeline.realtime import get_realtime_bridge

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _init_sentry() -> None:
    if not settings.sentry_dsn:
        return
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[FastApiIntegration(), LoggingIntegration(level=logging.INFO)],
        traces_sample_rate=0.1,
        environment=settings.environment,
    )
    logger.info("sentry.initialized", extra={"environment": settings.environment})


async def _start_realtime_bridge() -> None:
    bridge = get_realtime_bridge()
    try:
        await bridge.load()
        await bridge.subscribe()
    except PipelineError:
        # The API still serves; only the live board stays idle.
        logger.exception("realtime.bridge.start_failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    _init_sentry()
    await init_database()
    if not settings.automation_inbound_enabled:
        logger.warning("webhook.secret_not_configured", extra={"effect": "webhooks reject all"})
    await _start_realtime_bridge()

    yield

    logger.info("Shutting down application")
    await get_realtime_bridge().unsubscribe()
    # Pending lead.created notifications are flushed before the client closes.
    await get_notifier().close()
    await close_database()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Lead pipeline API: status transitions, interaction log and automation webhooks",
    lifespan=lifespan,
    debug=settings.debug,
)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Schema violations are plain bad requests for this API."""
    logger.info(
        "request.validation_failed",
        extra={"path": request.url.path, "errors": len(exc.errors())},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    """Fallback for service errors a route did not translate itself."""
    status_code = map_error_code(exc.code)
    log = logger.error if status_code >= 500 else logger.info
    log("request.pipeline_error", extra={"path": request.url.path, "code": exc.code})
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    with metrics.timer("http.request.latency", tags={"method": request.method}) as tags:
        logger.info(f"{request.method} {request.url.path}")
        response = await call_next(request)
        tags["status"] = response.status_code
        logger.info(f"Response status: {response.status_code}")
    return response


app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(leads.router, prefix="/api", tags=["leads"])
app.include_router(companies.router, prefix="/api", tags=["companies"])
app.include_router(interactions.router, prefix="/api", tags=["interactions"])
app.include_router(status_routes.router, prefix="/api", tags=["status"])
app.include_router(email_templates.router, prefix="/api", tags=["email-templates"])
app.include_router(realtime.router, prefix="/api", tags=["realtime"])
app.include_router(webhooks.router, prefix="/webhooks/automation", tags=["webhooks"])


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "pipeline": "/api/leads/pipeline",
        "live_pipeline": "/api/realtime/pipeline",
    }
