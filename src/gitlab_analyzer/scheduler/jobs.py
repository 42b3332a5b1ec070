"""
APScheduler jobs for background sync.

A periodic job syncs every registered project. Each run is incremental
from the project's last completed cursor, so frequent runs are cheap.

The job shares a ProjectSyncLocks registry with whoever else syncs in the
same process, so it never overlaps a run that is already in flight.
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from gitlab_analyzer.clock import utcnow
from gitlab_analyzer.config import Settings, get_settings
from gitlab_analyzer.gitlab.sync_service import ProjectSyncLocks

logger = logging.getLogger(__name__)


def build_scheduler(
    engine,
    locks: Optional[ProjectSyncLocks] = None,
    settings: Optional[Settings] = None,
) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the sync service.
        locks: Lock registry shared with other syncs in this process.
        settings: Defaults to get_settings().

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = settings or get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _periodic_sync,
        trigger="interval",
        minutes=settings.sync_interval_minutes,
        id="periodic_sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={
            "engine": engine,
            "locks": locks or ProjectSyncLocks(),
            "settings": settings,
        },
    )

    return scheduler


async def _periodic_sync(engine, locks: ProjectSyncLocks, settings: Settings) -> None:
    """Periodic job: sync every registered project. Never raises."""
    from gitlab_analyzer.gitlab.client import GitLabClient
    from gitlab_analyzer.gitlab.sync_service import CommitSyncService
    from gitlab_analyzer.repositories.container import Repositories

    logger.info("Periodic sync starting at %s", utcnow().isoformat())

    try:
        repos = Repositories.from_engine(engine)
        async with GitLabClient(settings) as client:
            service = CommitSyncService(client=client, repos=repos, settings=settings, locks=locks)
            results = await service.sync_all()

        failed = [r for r in results if not r.ok]
        logger.info(
            "Periodic sync finished: %d project(s), %d failed", len(results), len(failed)
        )
    except Exception as exc:
        logger.error("Periodic sync failed: %s", exc)
