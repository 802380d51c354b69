"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown of the realtime transport and
the hub built on top of it. Middleware, CORS, and routers all registered
here.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sitewatch import __version__
from sitewatch.api import api_router
from sitewatch.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at
    shutdown. Realtime is optional — without a transport the API still
    serves alarm reads, and realtime routes answer 503.
    """
    logger.info(
        "sitewatch.starting",
        version=__version__,
        environment=settings.environment,
        transport=settings.transport,
        port=settings.port,
    )

    from sitewatch.db.engine import async_session_factory, engine
    from sitewatch.realtime.hub import close_hub, init_hub
    from sitewatch.realtime.pubsub import create_transport
    from sitewatch.services.alarm_service import SqlAlarmRepository

    transport = create_transport(settings)
    try:
        await transport.start()
        await init_hub(transport, SqlAlarmRepository(async_session_factory), settings)
        logger.info("sitewatch.realtime_started")
    except Exception as e:
        logger.warning("sitewatch.realtime_unavailable", error=str(e))

    yield

    # Shutdown
    logger.info("sitewatch.shutdown")
    await close_hub()
    await transport.close()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="SiteWatch",
        description="Realtime alarm and bridge command core for site monitoring",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette runs middleware in reverse order of registration:
    # RequestId → Security → CORS → handler

    from sitewatch.middleware.request_id import RequestIdMiddleware
    from sitewatch.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    # WebSocket bridge for browser subscribers
    from sitewatch.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: sitewatch.main:app)
app = create_app()
