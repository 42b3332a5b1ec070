"""Sync trigger, status and history routes."""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel

from gitlab_analyzer.api.dependencies import (
    get_app_settings,
    get_repositories,
    get_sync_locks,
)
from gitlab_analyzer.config import Settings
from gitlab_analyzer.gitlab.client import GitLabClient
from gitlab_analyzer.gitlab.sync_service import CommitSyncService, ProjectSyncLocks
from gitlab_analyzer.models.sync import SyncLog, SyncStatus, SyncType
from gitlab_analyzer.repositories.container import Repositories

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    project_id: Optional[int] = None  # If None, syncs every registered project


class SyncStatusResponse(BaseModel):
    status: str
    project_id: Optional[int] = None
    sync_type: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    records_processed: Optional[int] = None
    records_added: Optional[int] = None
    records_updated: Optional[int] = None
    last_commit_sha: Optional[str] = None
    last_commit_date: Optional[datetime] = None
    error_message: Optional[str] = None


async def _do_sync(
    project_id: Optional[int],
    repos: Repositories,
    settings: Settings,
    locks: ProjectSyncLocks,
) -> None:
    """Background task: sync one project, or all of them."""
    try:
        async with GitLabClient(settings) as client:
            service = CommitSyncService(client=client, repos=repos, settings=settings, locks=locks)
            if project_id is not None:
                await service.sync_project_by_id(project_id)
            else:
                results = await service.sync_all()
                failed = [r for r in results if not r.ok]
                if failed:
                    logger.warning("%d of %d project syncs failed", len(failed), len(results))
    except Exception as exc:
        logger.error("Triggered sync failed: %s", exc)


@router.post("/trigger", status_code=202)
async def trigger_sync(
    request: SyncTriggerRequest,
    background_tasks: BackgroundTasks,
    repos: Repositories = Depends(get_repositories),
    settings: Settings = Depends(get_app_settings),
    locks: ProjectSyncLocks = Depends(get_sync_locks),
):
    """
    Trigger an on-demand commit sync.
    Returns immediately; sync runs in background.
    """
    if request.project_id is not None:
        if not repos.projects.get_by_id(request.project_id):
            raise HTTPException(status_code=404, detail="Project not found")
        if locks.is_running(request.project_id):
            raise HTTPException(status_code=409, detail="Sync already running for this project")

    background_tasks.add_task(_do_sync, request.project_id, repos, settings, locks)
    return {"message": "Sync started", "project_id": request.project_id}


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    project_id: Optional[int] = None,
    repos: Repositories = Depends(get_repositories),
):
    """Return the most recent sync run, for one project or across all of them."""
    if project_id is not None:
        log = repos.sync_logs.find_latest(project_id)
    else:
        logs = repos.sync_logs.find(limit=1)
        log = logs[0] if logs else None

    if not log:
        return SyncStatusResponse(status="never_run", project_id=project_id)
    return SyncStatusResponse(
        status=SyncStatus(log.status).value,
        project_id=log.project_id,
        sync_type=SyncType(log.sync_type).value,
        started_at=log.started_at,
        completed_at=log.completed_at,
        duration_ms=log.duration_ms,
        records_processed=log.records_processed,
        records_added=log.records_added,
        records_updated=log.records_updated,
        last_commit_sha=log.last_commit_sha,
        last_commit_date=log.last_commit_date,
        error_message=log.error_message,
    )


@router.get("/logs", response_model=List[SyncLog])
def sync_logs(
    project_id: Optional[int] = None,
    status: Optional[SyncStatus] = None,
    limit: int = Query(20, ge=1, le=100),
    repos: Repositories = Depends(get_repositories),
):
    """Sync run history, newest first."""
    return repos.sync_logs.find(project_id=project_id, status=status, limit=limit)
