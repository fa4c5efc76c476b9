"""
FastAPI application entry point for the schedule backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from schedule_backend import admin_routes, auth_routes
from schedule_backend.auth_service import AuthService
from schedule_backend.config import get_settings
from schedule_backend.dependencies import get_db_client, get_kv_store
from schedule_backend.errors import install_error_handlers
from schedule_backend.routes import public_router, router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.admin_seed_enabled:
        AuthService(get_db_client(), get_kv_store(), settings).seed_admin()
    logger.info("Serving API under %s", settings.api_prefix)
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Schedule Manager Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)
    app.include_router(auth_routes.router, prefix=settings.api_prefix)
    app.include_router(admin_routes.router, prefix=settings.api_prefix)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(public_router)
    return app


app = create_app()
