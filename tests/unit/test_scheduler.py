"""Tests for APScheduler job configuration and periodic sync job body."""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from gitlab_analyzer.gitlab.sync_service import ProjectSyncLocks, SyncResult
from gitlab_analyzer.models.sync import SyncStatus
from gitlab_analyzer.scheduler.jobs import _periodic_sync, build_scheduler


class TestBuildScheduler:
    def test_returns_scheduler(self, settings):
        scheduler = build_scheduler(MagicMock(), settings=settings)
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_periodic_sync_job_registered(self, settings):
        scheduler = build_scheduler(MagicMock(), settings=settings)
        job_ids = [job.id for job in scheduler.get_jobs()]
        assert "periodic_sync" in job_ids

    def test_periodic_sync_is_interval(self, settings):
        scheduler = build_scheduler(MagicMock(), settings=settings)
        job = next(j for j in scheduler.get_jobs() if j.id == "periodic_sync")
        assert job.trigger.__class__.__name__ == "IntervalTrigger"

    def test_interval_from_settings(self, settings):
        """Scheduler respects the SYNC_INTERVAL_MINUTES setting."""
        settings.sync_interval_minutes = 15
        scheduler = build_scheduler(MagicMock(), settings=settings)
        job = next(j for j in scheduler.get_jobs() if j.id == "periodic_sync")
        assert job.trigger.interval == timedelta(minutes=15)

    def test_shares_given_locks(self, settings):
        locks = ProjectSyncLocks()
        scheduler = build_scheduler(MagicMock(), locks=locks, settings=settings)
        job = next(j for j in scheduler.get_jobs() if j.id == "periodic_sync")
        assert job.kwargs["locks"] is locks

    def test_scheduler_not_running_on_creation(self, settings):
        """build_scheduler should not auto-start."""
        scheduler = build_scheduler(MagicMock(), settings=settings)
        assert not scheduler.running


# ─── _periodic_sync job body ──────────────────────────────────────────────────

class TestPeriodicSyncJob:
    """Tests for the _periodic_sync() async function.

    GitLabClient and CommitSyncService are lazily imported inside the function
    body, so we patch them at their source module paths rather than on the
    scheduler.jobs namespace.
    """

    @pytest.mark.asyncio
    async def test_syncs_all_projects(self, engine, settings):
        mock_service = MagicMock()
        mock_service.sync_all = AsyncMock(return_value=[
            SyncResult(project_id=1, status=SyncStatus.COMPLETED),
            SyncResult(project_id=2, status=SyncStatus.FAILED, error="boom"),
        ])

        with patch("gitlab_analyzer.gitlab.client.GitLabClient") as mock_client_cls, \
             patch("gitlab_analyzer.gitlab.sync_service.CommitSyncService", return_value=mock_service):
            mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=MagicMock())
            mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
            await _periodic_sync(engine=engine, locks=ProjectSyncLocks(), settings=settings)

        mock_service.sync_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_passes_shared_locks(self, engine, settings):
        locks = ProjectSyncLocks()
        mock_service = MagicMock()
        mock_service.sync_all = AsyncMock(return_value=[])

        with patch("gitlab_analyzer.gitlab.client.GitLabClient") as mock_client_cls, \
             patch("gitlab_analyzer.gitlab.sync_service.CommitSyncService", return_value=mock_service) as mock_service_cls:
            mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=MagicMock())
            mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
            await _periodic_sync(engine=engine, locks=locks, settings=settings)

        assert mock_service_cls.call_args.kwargs["locks"] is locks

    @pytest.mark.asyncio
    async def test_exception_does_not_propagate(self, engine, settings):
        """Periodic sync catches all exceptions so the scheduler stays alive."""
        mock_service = MagicMock()
        mock_service.sync_all = AsyncMock(side_effect=Exception("Connection refused"))

        with patch("gitlab_analyzer.gitlab.client.GitLabClient") as mock_client_cls, \
             patch("gitlab_analyzer.gitlab.sync_service.CommitSyncService", return_value=mock_service):
            mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=MagicMock())
            mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
            # Should not raise
            await _periodic_sync(engine=engine, locks=ProjectSyncLocks(), settings=settings)

    @pytest.mark.asyncio
    async def test_missing_token_does_not_propagate(self, engine, settings):
        settings.gitlab_token = ""
        # Real GitLabClient raises ValueError; the job logs and returns
        await _periodic_sync(engine=engine, locks=ProjectSyncLocks(), settings=settings)
