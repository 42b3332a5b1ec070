"""FastAPI dependencies: process-wide objects stored on app.state by create_app()."""
from fastapi import Request
from sqlalchemy.engine import Engine

from gitlab_analyzer.config import Settings
from gitlab_analyzer.gitlab.sync_service import ProjectSyncLocks
from gitlab_analyzer.repositories.container import Repositories


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_repositories(request: Request) -> Repositories:
    return request.app.state.repos


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_sync_locks(request: Request) -> ProjectSyncLocks:
    return request.app.state.sync_locks
