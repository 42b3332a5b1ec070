"""Project and commit query routes."""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel

from gitlab_analyzer.api.dependencies import get_app_settings, get_repositories
from gitlab_analyzer.clock import to_naive_utc
from gitlab_analyzer.config import Settings
from gitlab_analyzer.gitlab.client import GitLabClient
from gitlab_analyzer.gitlab.errors import GitLabApiError
from gitlab_analyzer.gitlab.sync_service import CommitSyncService
from gitlab_analyzer.models.commit import Commit
from gitlab_analyzer.models.project import Project
from gitlab_analyzer.repositories.commits import (
    AuthorStats,
    CommitterRanking,
    MonthlyStats,
    RankingPeriod,
)
from gitlab_analyzer.repositories.container import Repositories

logger = logging.getLogger(__name__)

router = APIRouter()


class RegisterProjectRequest(BaseModel):
    gitlab_id: int


def _require_project(repos: Repositories, project_id: int) -> Project:
    project = repos.projects.get_by_id(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.get("", response_model=List[Project])
def list_projects(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    repos: Repositories = Depends(get_repositories),
):
    """List registered projects by name."""
    return repos.projects.list_all(limit=limit, offset=offset)


@router.post("", response_model=Project, status_code=201)
async def register_project(
    request: RegisterProjectRequest,
    repos: Repositories = Depends(get_repositories),
    settings: Settings = Depends(get_app_settings),
):
    """Register a GitLab project (or refresh it if already registered)."""
    try:
        client = GitLabClient(settings)
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    try:
        service = CommitSyncService(client=client, repos=repos, settings=settings)
        return await service.register_project(request.gitlab_id)
    except GitLabApiError as exc:
        logger.warning("Registering GitLab project %s failed: %s", request.gitlab_id, exc)
        if exc.status_code == 404:
            raise HTTPException(status_code=404, detail="GitLab project not found")
        raise HTTPException(status_code=502, detail=str(exc))
    finally:
        await client.aclose()


@router.get("/{project_id}", response_model=Project)
def get_project(project_id: int, repos: Repositories = Depends(get_repositories)):
    """Fetch a single project by primary key."""
    return _require_project(repos, project_id)


@router.delete("/{project_id}", status_code=204)
def delete_project(project_id: int, repos: Repositories = Depends(get_repositories)):
    """Delete a project with its commits and sync history."""
    if not repos.projects.delete(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return Response(status_code=204)


@router.get("/{project_id}/commits", response_model=List[Commit])
def list_commits(
    project_id: int,
    author_email: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    repos: Repositories = Depends(get_repositories),
):
    """
    List a project's commits, newest first.

    Narrow by author_email, or by an authored-date range [start, end).
    The two filters can't be combined.
    """
    _require_project(repos, project_id)
    has_range = start is not None or end is not None
    if author_email and has_range:
        raise HTTPException(status_code=400, detail="Filter by author_email or by date range, not both")
    if author_email:
        return repos.commits.find_by_author(project_id, author_email, limit=limit, offset=offset)
    if has_range:
        if start is None or end is None:
            raise HTTPException(status_code=400, detail="start and end are both required")
        return repos.commits.find_by_date_range(
            project_id, to_naive_utc(start), to_naive_utc(end), limit=limit, offset=offset
        )
    return repos.commits.list_by_project(project_id, limit=limit, offset=offset)


@router.get("/{project_id}/commits/authors", response_model=List[AuthorStats])
def author_stats(project_id: int, repos: Repositories = Depends(get_repositories)):
    """Per-author commit counts and line totals, busiest author first."""
    _require_project(repos, project_id)
    return repos.commits.author_stats(project_id)


@router.get("/{project_id}/commits/monthly", response_model=List[MonthlyStats])
def monthly_stats(project_id: int, repos: Repositories = Depends(get_repositories)):
    _require_project(repos, project_id)
    return repos.commits.monthly_stats(project_id)


@router.get("/{project_id}/commits/ranking", response_model=List[CommitterRanking])
def committer_ranking(
    project_id: int,
    period: RankingPeriod = RankingPeriod.ALL,
    limit: int = Query(10, ge=1, le=100),
    repos: Repositories = Depends(get_repositories),
):
    """Top committers by commit count over all time, or the last year, half year or month."""
    _require_project(repos, project_id)
    return repos.commits.committer_ranking(project_id, period, limit=limit)
