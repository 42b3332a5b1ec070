from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, update
from sqlmodel import select

from gitlab_analyzer.clock import utcnow
from gitlab_analyzer.models.sync import SyncLog, SyncStatus, SyncType
from gitlab_analyzer.repositories.base import BaseRepository


class SyncLogsRepository(BaseRepository[SyncLog]):
    """Sync run history and the incremental-sync cursor it carries.

    A log leaves the running state exactly once: complete, fail and the
    stale-run reaper all update only rows that are still running.
    """

    model = SyncLog

    def create_sync_log(
        self,
        project_id: int,
        sync_type: SyncType,
        *,
        started_at: Optional[datetime] = None,
        last_commit_sha: Optional[str] = None,
        last_commit_date: Optional[datetime] = None,
    ) -> SyncLog:
        """Open a run in the running state.

        Raises:
            DatabaseError: kind UNIQUE_CONSTRAINT if the project already has
                a running log.
        """
        started_at = started_at or utcnow()
        return self.create(
            {
                "project_id": project_id,
                "sync_type": sync_type,
                "status": SyncStatus.RUNNING,
                "started_at": started_at,
                "heartbeat_at": started_at,
                "last_commit_sha": last_commit_sha,
                "last_commit_date": last_commit_date,
            }
        )

    def touch_sync_log(self, log_id: int) -> bool:
        """Bump heartbeat_at on a running log. False if the run is no longer running."""
        with self.session() as s:
            result = s.execute(
                update(SyncLog)
                .where(SyncLog.id == log_id, SyncLog.status == SyncStatus.RUNNING)
                .values(heartbeat_at=utcnow())
            )
            s.commit()
            return result.rowcount == 1

    def complete_sync_log(
        self,
        log_id: int,
        *,
        records_processed: int = 0,
        records_added: int = 0,
        records_updated: int = 0,
        last_commit_sha: Optional[str] = None,
        last_commit_date: Optional[datetime] = None,
    ) -> Optional[SyncLog]:
        """Close a running log as completed. None if it is missing or already closed."""
        return self._finish(
            log_id,
            status=SyncStatus.COMPLETED,
            records_processed=records_processed,
            records_added=records_added,
            records_updated=records_updated,
            last_commit_sha=last_commit_sha,
            last_commit_date=last_commit_date,
            error_message=None,
        )

    def fail_sync_log(
        self,
        log_id: int,
        *,
        error_message: str,
        records_processed: int = 0,
        records_added: int = 0,
        records_updated: int = 0,
        last_commit_sha: Optional[str] = None,
        last_commit_date: Optional[datetime] = None,
    ) -> Optional[SyncLog]:
        """Close a running log as failed. None if it is missing or already closed."""
        return self._finish(
            log_id,
            status=SyncStatus.FAILED,
            records_processed=records_processed,
            records_added=records_added,
            records_updated=records_updated,
            last_commit_sha=last_commit_sha,
            last_commit_date=last_commit_date,
            error_message=error_message,
        )

    def _finish(self, log_id: int, *, status: SyncStatus, **fields) -> Optional[SyncLog]:
        with self.session() as s:
            log = s.get(SyncLog, log_id)
            if log is None or log.status != SyncStatus.RUNNING:
                return None
            now = utcnow()
            result = s.execute(
                update(SyncLog)
                .where(SyncLog.id == log_id, SyncLog.status == SyncStatus.RUNNING)
                .values(
                    status=status,
                    completed_at=now,
                    duration_ms=max(0, int((now - log.started_at).total_seconds() * 1000)),
                    **fields,
                )
            )
            if result.rowcount != 1:
                s.rollback()
                return None
            s.commit()
            s.refresh(log)
            return log

    def find(
        self,
        project_id: Optional[int] = None,
        sync_type: Optional[SyncType] = None,
        status: Optional[SyncStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[SyncLog]:
        """Logs matching the filters, newest first."""
        stmt = select(SyncLog)
        if project_id is not None:
            stmt = stmt.where(SyncLog.project_id == project_id)
        if sync_type is not None:
            stmt = stmt.where(SyncLog.sync_type == sync_type)
        if status is not None:
            stmt = stmt.where(SyncLog.status == status)
        stmt = (
            stmt.order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
        with self.session() as s:
            return list(s.exec(stmt).all())

    def find_latest(self, project_id: int) -> Optional[SyncLog]:
        """Most recent run of any status."""
        logs = self.find(project_id=project_id, limit=1)
        return logs[0] if logs else None

    def find_latest_sync_log(self, project_id: int) -> Optional[SyncLog]:
        """Most recent completed run: the source of the resume cursor."""
        logs = self.find(project_id=project_id, status=SyncStatus.COMPLETED, limit=1)
        return logs[0] if logs else None

    def find_running(self, project_id: int) -> List[SyncLog]:
        return self.find(project_id=project_id, status=SyncStatus.RUNNING)

    def fail_stale_runs(self, project_id: int, stale_before: datetime) -> int:
        """Mark running logs whose last heartbeat is older than the cutoff as failed.

        A run left in the running state by a crashed process never finishes
        on its own; this closes it so it stops blocking new runs.
        """
        last_seen = func.coalesce(SyncLog.heartbeat_at, SyncLog.started_at)
        with self.session() as s:
            stale = list(
                s.exec(
                    select(SyncLog).where(
                        SyncLog.project_id == project_id,
                        SyncLog.status == SyncStatus.RUNNING,
                        last_seen < stale_before,
                    )
                ).all()
            )
        reaped = 0
        for log in stale:
            closed = self.fail_sync_log(
                log.id,
                error_message="interrupted",
                records_processed=log.records_processed,
                records_added=log.records_added,
                records_updated=log.records_updated,
                last_commit_sha=log.last_commit_sha,
                last_commit_date=log.last_commit_date,
            )
            if closed is not None:
                reaped += 1
        return reaped
