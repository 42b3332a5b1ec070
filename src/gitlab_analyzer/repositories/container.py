"""Repository bundle built once per process from an explicit engine."""
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from gitlab_analyzer.repositories.commits import CommitsRepository
from gitlab_analyzer.repositories.projects import ProjectsRepository
from gitlab_analyzer.repositories.sync_logs import SyncLogsRepository


@dataclass(frozen=True)
class Repositories:
    projects: ProjectsRepository
    commits: CommitsRepository
    sync_logs: SyncLogsRepository

    @classmethod
    def from_engine(cls, engine: Engine) -> "Repositories":
        return cls(
            projects=ProjectsRepository(engine),
            commits=CommitsRepository(engine),
            sync_logs=SyncLogsRepository(engine),
        )
