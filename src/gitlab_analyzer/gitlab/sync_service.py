"""
CommitSyncService: orchestrates pulling commits from GitLab into the DB.

Flow for a single project:
  1. Reject if a run for this project is already in flight in this process
     (per-project asyncio.Lock).
  2. Read the latest completed SyncLog. With a cursor date the run is
     incremental (since=last_commit_date); without one it is full.
  3. Claim the project by creating a SyncLog (status="running"). Running
     logs whose heartbeat is older than sync_stale_after_minutes are closed
     as failed first; a unique index allows one running log per project,
     so a claim held by another process rejects this run.
  4. Page through list_commits() in API order; bump the heartbeat, then
     normalize each page and upsert it in one transaction keyed by
     (project_id, sha)
  5. Complete SyncLog with counters and the newest commit as the new cursor

If the claim was lost (the log was reaped as stale by another process) the
run stops before writing the next page and does not complete the log.

On any exception: fail SyncLog with the previous cursor unchanged and
re-raise. The next run resumes from the last completed cursor. A cancelled
run is failed with error "cancelled".

Repository calls are blocking SQLAlchemy calls and run in the default
thread pool, so page writes never stall the event loop.

Idempotency: re-upserting an unchanged commit counts as processed only; a
changed one is updated in place (records_updated), never duplicated.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import backoff

from gitlab_analyzer.clock import utcnow
from gitlab_analyzer.config import Settings, get_settings
from gitlab_analyzer.db.errors import DatabaseError, DbErrorKind
from gitlab_analyzer.gitlab.normalizer import normalize_commit, normalize_project
from gitlab_analyzer.models.project import Project
from gitlab_analyzer.models.sync import SyncLog, SyncStatus, SyncType
from gitlab_analyzer.repositories.commits import UpsertCounts
from gitlab_analyzer.repositories.container import Repositories

logger = logging.getLogger(__name__)


class SyncAlreadyRunningError(RuntimeError):
    """Raised when a sync for the same project is already in flight."""

    def __init__(self, project_id: int):
        super().__init__(f"A sync for project {project_id} is already running")
        self.project_id = project_id


class SyncClaimLostError(RuntimeError):
    """Raised when a run's log was closed by someone else while it was running."""

    def __init__(self, log_id: int):
        super().__init__(f"Sync run {log_id} is no longer running; it was closed elsewhere")
        self.log_id = log_id


class ProjectSyncLocks:
    """One asyncio.Lock per project id, shared by every service in a process."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def get(self, project_id: int) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        return lock

    def is_running(self, project_id: int) -> bool:
        lock = self._locks.get(project_id)
        return lock is not None and lock.locked()


@dataclass
class SyncResult:
    project_id: int
    status: SyncStatus
    sync_type: Optional[SyncType] = None
    sync_log_id: Optional[int] = None
    records_processed: int = 0
    records_added: int = 0
    records_updated: int = 0
    last_commit_sha: Optional[str] = None
    last_commit_date: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.COMPLETED


class CommitSyncService:
    """Syncs GitLab commits for registered projects."""

    def __init__(
        self,
        client,
        repos: Repositories,
        *,
        settings: Optional[Settings] = None,
        locks: Optional[ProjectSyncLocks] = None,
    ):
        """
        Args:
            client: GitLabClient instance (or a mock in tests).
            repos: Repository bundle bound to the process engine.
            settings: Defaults to get_settings().
            locks: Shared lock registry; pass the same one to every service
                   in a process so concurrent runs are detected.
        """
        self.client = client
        self.repos = repos
        self.settings = settings or get_settings()
        self.locks = locks or ProjectSyncLocks()
        self._write_page = backoff.on_exception(
            backoff.expo,
            DatabaseError,
            max_tries=self.settings.db_max_retries + 1,
            giveup=lambda e: not e.retryable,
            jitter=None,
            factor=self.settings.db_backoff_seconds,
        )(self._write_page_once)

    # ─── Public API ───────────────────────────────────────────────────────────

    async def sync_all(self) -> List[SyncResult]:
        """Sync every registered project. A failing project doesn't stop the rest."""
        results = []
        for project in await self._db(self.repos.projects.list_all, limit=None):
            try:
                results.append(await self.sync_project(project))
            except Exception as exc:
                logger.error('Commit sync failed for project "%s": %s', project.name, exc)
                results.append(
                    SyncResult(project_id=project.id, status=SyncStatus.FAILED, error=str(exc))
                )
        return results

    async def sync_project_by_id(self, project_id: int) -> SyncResult:
        project = await self._db(self.repos.projects.get_by_id, project_id)
        if project is None:
            raise LookupError(f"Project {project_id} not found")
        return await self.sync_project(project)

    async def sync_project(self, project: Project) -> SyncResult:
        """
        Run one commit sync for a project.

        Returns:
            SyncResult for the completed run.

        Raises:
            SyncAlreadyRunningError: if a run for this project is in flight.
            SyncClaimLostError: if the run's log was reaped while it ran.
            GitLabApiError / DatabaseError: after the SyncLog is marked failed.
        """
        lock = self.locks.get(project.id)
        if lock.locked():
            raise SyncAlreadyRunningError(project.id)
        async with lock:
            return await self._run(project)

    async def register_project(self, gitlab_id: int) -> Project:
        """Fetch a project from GitLab and create or refresh its row."""
        raw = await self.client.get_project(gitlab_id)
        project = await self._db(self.repos.projects.upsert, normalize_project(raw))
        logger.info("Registered project %s (gitlab_id=%s)", project.name, project.gitlab_id)
        return project

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _db(self, fn, *args, **kwargs):
        """Run a blocking repository call in the thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))

    async def _claim(
        self,
        project: Project,
        sync_type: SyncType,
        cursor_sha: Optional[str],
        cursor_date: Optional[datetime],
    ) -> SyncLog:
        """Close stale running logs, then open this run's log as the project's claim."""
        cutoff = utcnow() - timedelta(minutes=self.settings.sync_stale_after_minutes)
        reaped = await self._db(
            self.repos.sync_logs.fail_stale_runs, project.id, stale_before=cutoff
        )
        if reaped:
            logger.warning("Marked %d interrupted sync run(s) for %s as failed", reaped, project.name)
        try:
            return await self._db(
                self.repos.sync_logs.create_sync_log,
                project.id,
                sync_type,
                last_commit_sha=cursor_sha,
                last_commit_date=cursor_date,
            )
        except DatabaseError as exc:
            if exc.kind is DbErrorKind.UNIQUE_CONSTRAINT:
                raise SyncAlreadyRunningError(project.id) from exc
            raise

    async def _run(self, project: Project) -> SyncResult:
        previous = await self._db(self.repos.sync_logs.find_latest_sync_log, project.id)
        cursor_sha = previous.last_commit_sha if previous else None
        cursor_date = previous.last_commit_date if previous else None
        if cursor_date is not None:
            sync_type, since = SyncType.INCREMENTAL, cursor_date
        else:
            sync_type, since = SyncType.FULL, None

        log = await self._claim(project, sync_type, cursor_sha, cursor_date)
        logger.info(
            "Starting %s commit sync for %s (since=%s)",
            sync_type.value,
            project.name,
            since.isoformat() if since else "-",
        )

        counts = UpsertCounts()
        newest_sha, newest_date = cursor_sha, cursor_date
        try:
            async for page in self.client.list_commits(
                project.gitlab_id,
                since=since,
                ref_name=project.default_branch,
                with_stats=True,
                per_page=self.settings.gitlab_per_page,
            ):
                if not await self._db(self.repos.sync_logs.touch_sync_log, log.id):
                    raise SyncClaimLostError(log.id)

                records = [normalize_commit(raw) for raw in page]
                page_counts = await self._write_page(project.id, records)
                counts.processed += page_counts.processed
                counts.added += page_counts.added
                counts.updated += page_counts.updated

                for record in records:
                    when = record["committed_date"]
                    if when is not None and (newest_date is None or when > newest_date):
                        newest_sha, newest_date = record["sha"], when

            completed = await self._db(
                self.repos.sync_logs.complete_sync_log,
                log.id,
                records_processed=counts.processed,
                records_added=counts.added,
                records_updated=counts.updated,
                last_commit_sha=newest_sha,
                last_commit_date=newest_date,
            )
            if completed is None:
                raise SyncClaimLostError(log.id)
        except Exception as exc:
            await self._db(self._record_failure, log.id, str(exc), counts, cursor_sha, cursor_date)
            raise
        except asyncio.CancelledError:
            self._record_failure(log.id, "cancelled", counts, cursor_sha, cursor_date)
            raise

        logger.info(
            "Commit sync for %s completed: processed=%d added=%d updated=%d",
            project.name,
            counts.processed,
            counts.added,
            counts.updated,
        )
        return SyncResult(
            project_id=project.id,
            status=SyncStatus.COMPLETED,
            sync_type=sync_type,
            sync_log_id=log.id,
            records_processed=counts.processed,
            records_added=counts.added,
            records_updated=counts.updated,
            last_commit_sha=newest_sha,
            last_commit_date=newest_date,
        )

    def _record_failure(
        self,
        log_id: int,
        error_message: str,
        counts: UpsertCounts,
        cursor_sha: Optional[str],
        cursor_date: Optional[datetime],
    ) -> None:
        logger.error("Commit sync run %s failed: %s", log_id, error_message)
        try:
            closed = self.repos.sync_logs.fail_sync_log(
                log_id,
                error_message=error_message,
                records_processed=counts.processed,
                records_added=counts.added,
                records_updated=counts.updated,
                last_commit_sha=cursor_sha,
                last_commit_date=cursor_date,
            )
        except DatabaseError:
            # The original error is re-raised by the caller; this one is only logged.
            logger.exception("Could not mark sync run %s as failed", log_id)
            return
        if closed is None:
            logger.warning("Sync run %s was already closed; its status is left as is", log_id)

    async def _write_page_once(self, project_id: int, records) -> UpsertCounts:
        return await self._db(self.repos.commits.upsert_many, project_id, records)
