"""FastAPI application factory for the lexrag HTTP API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from lexrag.api.errors import register_error_handlers
from lexrag.api.routers.admin import admin_router
from lexrag.api.routers.chat import chat_router
from lexrag.api.routers.conversations import conversations_router
from lexrag.api.routers.tokens import tokens_router
from lexrag.config import LexragConfig, load_config
from lexrag.db import Database, ensure_embedding_space, initialize
from lexrag.logging_setup import configure_logging

log = structlog.get_logger(__name__)


def _app_version() -> str:
    try:
        return version("lexrag")
    except PackageNotFoundError:
        return "dev"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    log.info("api.started", database=str(app.state.database.db_path))
    yield
    log.info("api.stopped")


def create_app(config: LexragConfig | None = None) -> FastAPI:
    """Build the API application.

    The schema is migrated and the embedding space recorded before the app is
    returned, so a misconfigured embedding model fails at startup rather than
    on the first request.
    """
    config = config or load_config()
    configure_logging(config.logging.level, config.logging.json)

    database = Database(config.database)
    with database as conn:
        initialize(conn)
        ensure_embedding_space(conn, config.embedding.model, config.embedding.dimensions)

    app = FastAPI(
        title="lexrag",
        description="Retrieval-augmented legal assistant with metered token usage.",
        version=_app_version(),
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.database = database

    register_error_handlers(app)
    app.include_router(chat_router)
    app.include_router(tokens_router)
    app.include_router(conversations_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        return {"status": "ok", "version": app.version}

    return app
