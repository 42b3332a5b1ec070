"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from gitlab_analyzer.api.dependencies import get_engine
from gitlab_analyzer.api.routes import projects, sync as sync_routes
from gitlab_analyzer.config import Settings, get_settings
from gitlab_analyzer.db.engine import build_engine, check_connection, create_tables
from gitlab_analyzer.gitlab.sync_service import ProjectSyncLocks
from gitlab_analyzer.repositories.container import Repositories

logger = logging.getLogger(__name__)


def create_app(engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and return the FastAPI app.

    Args:
        engine: Engine to serve from. When omitted one is built from settings
                and disposed of when the app shuts down.
        settings: Defaults to get_settings().
    """
    settings = settings or get_settings()
    owns_engine = engine is None
    if engine is None:
        engine = build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        create_tables(engine)
        yield
        if owns_engine:
            engine.dispose()

    app = FastAPI(
        title="GitLab Repository Analyzer",
        description="GitLab commit sync backend",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.repos = Repositories.from_engine(engine)
    app.state.sync_locks = ProjectSyncLocks()

    @app.get("/health", tags=["health"])
    def health(engine: Engine = Depends(get_engine)):
        if check_connection(engine):
            return {"status": "ok", "database": "connected"}
        logger.error("Health check failed: database unreachable")
        return JSONResponse(
            status_code=503, content={"status": "error", "database": "unreachable"}
        )

    app.include_router(projects.router, prefix="/projects", tags=["projects"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
