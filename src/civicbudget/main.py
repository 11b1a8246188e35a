"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from civicbudget.api.cycles import router as cycles_router
from civicbudget.api.errors import register_error_handlers
from civicbudget.api.proposals import router as proposals_router
from civicbudget.api.voting import router as voting_router
from civicbudget.config import Settings
from civicbudget.db.engine import create_engine, create_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine and tables. Shutdown: dispose the engine."""
    settings: Settings = app.state.settings
    engine = create_engine(
        settings.database_url,
        busy_timeout_seconds=settings.civic_db_busy_timeout_seconds,
    )
    await create_tables(engine)
    app.state.engine = engine
    logger.info("app_started env=%s", settings.civic_env)

    yield

    await engine.dispose()
    logger.info("app_stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the civic budget FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.civic_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Civic Budget",
        version="0.1.0",
        description="Participatory budgeting cycles: proposals, votes, and winner allocation",
        docs_url="/docs" if settings.civic_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    register_error_handlers(app)

    app.include_router(cycles_router)
    app.include_router(proposals_router)
    app.include_router(voting_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.civic_env}

    return app


app = create_app()
