from typing import Any, Dict, List, Optional

from sqlalchemy import delete
from sqlmodel import select

from gitlab_analyzer.models.commit import Commit
from gitlab_analyzer.models.project import Project
from gitlab_analyzer.models.sync import SyncLog
from gitlab_analyzer.repositories.base import BaseRepository


class ProjectsRepository(BaseRepository[Project]):
    model = Project

    def get_by_gitlab_id(self, gitlab_id: int) -> Optional[Project]:
        with self.session() as s:
            return s.exec(select(Project).where(Project.gitlab_id == gitlab_id)).first()

    def list_all(self, limit: Optional[int] = 100, offset: int = 0) -> List[Project]:
        """Projects ordered by name."""
        with self.session() as s:
            stmt = select(Project).order_by(Project.name, Project.id).offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(s.exec(stmt).all())

    def update(self, id: int, data: Dict[str, Any]) -> Optional[Project]:
        # gitlab_id is immutable once set
        data = {k: v for k, v in data.items() if k != "gitlab_id"}
        return super().update(id, data)

    def upsert(self, data: Dict[str, Any]) -> Project:
        """Create the project, or update it in place if gitlab_id is known."""
        if not data.get("gitlab_id"):
            raise ValueError("gitlab_id is required")
        existing = self.get_by_gitlab_id(data["gitlab_id"])
        if existing is None:
            return self.create(data)
        return self.update(existing.id, data)

    def delete(self, id: int) -> bool:
        """Delete a project together with its commits and sync logs."""
        with self.session() as s:
            project = s.get(Project, id)
            if project is None:
                return False
            s.execute(delete(Commit).where(Commit.project_id == id))
            s.execute(delete(SyncLog).where(SyncLog.project_id == id))
            s.delete(project)
            s.commit()
            return True
