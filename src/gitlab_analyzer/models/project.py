"""GitLab project model."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from gitlab_analyzer.clock import utcnow

VISIBILITIES = ("public", "internal", "private")


class Project(SQLModel, table=True):
    """One row per GitLab project registered for analysis."""

    __tablename__ = "projects"

    id: Optional[int] = Field(default=None, primary_key=True)
    gitlab_id: int = Field(unique=True, index=True)
    name: str = Field(max_length=255, index=True)
    description: Optional[str] = None
    web_url: str = Field(max_length=500)
    default_branch: str = Field(default="main", max_length=255)
    visibility: str = Field(default="private", max_length=50)  # "public", "internal", "private"

    created_at: datetime = Field(default_factory=utcnow)
    gitlab_created_at: Optional[datetime] = None
