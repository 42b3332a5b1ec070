"""Engine construction and table creation.

The engine is built explicitly by the entry point (CLI, API lifespan,
scheduler) and handed to repositories; whoever builds it disposes of it.
"""
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from gitlab_analyzer.config import Settings


def build_engine(settings: Settings) -> Engine:
    """Create an engine for settings.database_url.

    SQLite is opened with check_same_thread=False so sessions can be used from
    FastAPI's threadpool. Server databases get a bounded, pre-pinged pool.
    """
    url = settings.database_url
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=0,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def create_tables(engine: Engine) -> None:
    """Create all tables and apply pending column migrations. Idempotent."""
    # Import all models so metadata is populated before create_all
    from gitlab_analyzer.models.commit import Commit  # noqa
    from gitlab_analyzer.models.project import Project  # noqa
    from gitlab_analyzer.models.sync import SyncLog  # noqa
    from gitlab_analyzer.db.migrations import run_migrations

    SQLModel.metadata.create_all(engine)
    run_migrations(engine)


def check_connection(engine: Engine) -> bool:
    """Return True if a trivial query succeeds."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
