from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from order_tracker.api.errors import register_exception_handlers
from order_tracker.api.routes.accounts import router as accounts_router
from order_tracker.api.routes.audit import router as audit_router
from order_tracker.api.routes.kiosk import router as kiosk_router
from order_tracker.api.routes.orders import router as orders_router
from order_tracker.api.routes.reports import router as reports_router
from order_tracker.api.routes.system import WEBSOCKET_ENDPOINTS, router as system_router
from order_tracker.core.logging import configure_logging, log_context
from order_tracker.core.settings import AppSettings, get_app_settings
from order_tracker.db.run_migrations import main as run_alembic
from order_tracker.db.session import dispose_engine

logger = logging.getLogger(__name__)

__all__ = ["app", "create_app", "WEBSOCKET_ENDPOINTS"]

OPENAPI_TAGS = [
    {"name": "Health", "description": "Liveness probe."},
    {"name": "Orders", "description": "Item stage transitions, regressions, archiving and measurements."},
    {"name": "Accounts", "description": "Account deletion guarded by existing orders."},
    {"name": "Audit", "description": "Append-only audit trail."},
    {"name": "Reports", "description": "Production and sales reports as JSON, CSV, Excel or PDF."},
    {"name": "WebSocket", "description": "Discovery for the kiosk WebSocket feed."},
]

CORRELATION_HEADERS = ("X-Correlation-ID", "X-Request-ID")


def _migrate_on_startup(settings: AppSettings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.RUN_MIGRATIONS_ON_STARTUP:
            logger.info("Applying migrations up to head")
            try:
                # Alembic's env.py runs its own event loop.
                await asyncio.to_thread(run_alembic, ["upgrade", "head"])
            except Exception:
                # Keep serving; requests will surface database errors until it recovers.
                logger.exception("Startup migrations failed")
        yield
        await dispose_engine()

    return lifespan


def _add_cors(app: FastAPI, settings: AppSettings) -> None:
    allow_credentials = settings.CORS_ALLOW_CREDENTIALS
    if allow_credentials and "*" in settings.CORS_ORIGINS:
        logger.warning("Wildcard CORS origins cannot carry credentials; disabling credentials")
        allow_credentials = False
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=allow_credentials,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )


async def correlation_middleware(request: Request, call_next):
    """Bind a correlation id to logs and echo it back as X-Correlation-ID."""
    corr = next(
        (request.headers[name] for name in CORRELATION_HEADERS if request.headers.get(name)),
        None,
    ) or str(uuid4())
    request.state.correlation_id = corr
    with log_context(corr):
        logger.info("%s %s", request.method, request.url.path)
        response = await call_next(request)
    response.headers["X-Correlation-ID"] = corr
    return response


# PUBLIC_INTERFACE
def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Build the order tracker application."""
    settings = settings or get_app_settings()
    configure_logging(settings.LOG_LEVEL.upper())

    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        openapi_tags=OPENAPI_TAGS,
        lifespan=_migrate_on_startup(settings),
    )
    _add_cors(app, settings)
    app.middleware("http")(correlation_middleware)
    register_exception_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    for router in (system_router, orders_router, accounts_router, audit_router, reports_router):
        api_v1.include_router(router)
    app.include_router(api_v1)
    app.include_router(kiosk_router)
    return app


app = create_app()
