"""Shared test fixtures."""
from typing import Any, Dict, List

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from gitlab_analyzer.models.commit import Commit  # noqa: F401
from gitlab_analyzer.models.project import Project
from gitlab_analyzer.models.sync import SyncLog  # noqa: F401
from gitlab_analyzer.config import Settings
from gitlab_analyzer.repositories.container import Repositories
from factories import make_raw_commit, sha


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    """Settings with no delays, so retry paths run instantly."""
    return Settings(
        _env_file=None,
        gitlab_url="https://gitlab.example.com",
        gitlab_token="test-token",
        gitlab_per_page=2,
        gitlab_max_retries=3,
        gitlab_backoff_seconds=0,
        gitlab_page_delay_seconds=0,
        database_url="sqlite:///:memory:",
        db_max_retries=2,
        db_backoff_seconds=0,
    )


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine):
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="repos")
def repos_fixture(engine) -> Repositories:
    return Repositories.from_engine(engine)


@pytest.fixture(name="seeded_project")
def seeded_project_fixture(repos) -> Project:
    """A persisted Project for commit and sync log tests."""
    return repos.projects.create(
        {
            "gitlab_id": 278964,
            "name": "gitlab-runner",
            "description": "CI runner",
            "web_url": "https://gitlab.example.com/group/gitlab-runner",
            "default_branch": "main",
            "visibility": "public",
        }
    )


@pytest.fixture
def raw_commits() -> List[Dict[str, Any]]:
    """Three commits, newest first, as GitLab lists them."""
    return [
        make_raw_commit(sha(3), "2025-01-03T00:00:00.000Z", "Third"),
        make_raw_commit(sha(2), "2025-01-02T00:00:00.000Z", "Second"),
        make_raw_commit(sha(1), "2025-01-01T00:00:00.000Z", "First"),
    ]
