"""Commit model: one row per (project, sha)."""
from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from gitlab_analyzer.clock import utcnow

# Columns compared when deciding whether an upsert changed an existing row.
TRACKED_FIELDS = (
    "short_id",
    "title",
    "message",
    "author_name",
    "author_email",
    "authored_date",
    "committer_name",
    "committer_email",
    "committed_date",
    "web_url",
    "additions",
    "deletions",
    "total",
)


class Commit(SQLModel, table=True):
    __tablename__ = "commits"
    __table_args__ = (
        UniqueConstraint("project_id", "sha", name="commits_project_sha_unique"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="projects.id", index=True, ondelete="CASCADE")
    sha: str = Field(max_length=40)
    short_id: Optional[str] = Field(default=None, max_length=40)

    title: str = ""
    message: str = ""

    author_name: str = Field(max_length=255)
    author_email: str = Field(max_length=255, index=True)
    authored_date: datetime = Field(index=True)
    committer_name: Optional[str] = Field(default=None, max_length=255)
    committer_email: Optional[str] = Field(default=None, max_length=255)
    committed_date: Optional[datetime] = None

    web_url: Optional[str] = Field(default=None, max_length=500)

    # Diff stats (only present when fetched with with_stats=true)
    additions: Optional[int] = None
    deletions: Optional[int] = None
    total: Optional[int] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
