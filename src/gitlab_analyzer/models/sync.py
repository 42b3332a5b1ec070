"""Sync run log model."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from gitlab_analyzer.clock import utcnow


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncLog(SQLModel, table=True):
    """Records each commit sync run for one project.

    The last_commit_sha / last_commit_date pair of the most recent
    completed row is the cursor the next incremental run resumes from.
    A running row is the run's claim on its project; heartbeat_at is
    bumped on every page so live runs are told apart from crashed ones.
    """

    __tablename__ = "sync_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", index=True, ondelete="CASCADE")
    sync_type: SyncType
    status: SyncStatus = SyncStatus.RUNNING

    started_at: datetime = Field(default_factory=utcnow, index=True)
    heartbeat_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    records_processed: int = 0
    records_added: int = 0
    records_updated: int = 0

    last_commit_sha: Optional[str] = Field(default=None, max_length=40)
    last_commit_date: Optional[datetime] = None

    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# At most one running log per project. A second claim fails with a unique violation.
RUNNING_CLAIM_INDEX = Index(
    "sync_logs_one_running_per_project",
    SyncLog.__table__.c.project_id,
    unique=True,
    sqlite_where=SyncLog.__table__.c.status == SyncStatus.RUNNING,
    postgresql_where=SyncLog.__table__.c.status == SyncStatus.RUNNING,
)
