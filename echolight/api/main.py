"""FastAPI application.

``create_app()`` wires logging, CORS and the health, release, message and
audit routers.  echolight/main.py re-exports the module-level ``app``.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from echolight.api.routes.audit import router as audit_router
from echolight.api.routes.health import router as health_router
from echolight.api.routes.messages import router as messages_router
from echolight.api.routes.releases import router as releases_router
from echolight.core.logging import setup_logging
from echolight.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("%s %s started (%s)", app.title, app.version, get_settings().app_env)
    yield


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    application = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    # The redemption portal is served from SITE_URL; other origins need CORS_ORIGINS.
    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    for router in (health_router, releases_router, messages_router, audit_router):
        application.include_router(router)
    return application


app = create_app()
