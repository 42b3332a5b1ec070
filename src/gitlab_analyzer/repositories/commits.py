"""Commit persistence with idempotent upsert on (project_id, sha)."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from gitlab_analyzer.clock import utcnow
from gitlab_analyzer.models.commit import TRACKED_FIELDS, Commit
from gitlab_analyzer.repositories.base import BaseRepository


class UpsertOutcome(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class UpsertCounts:
    processed: int = 0
    added: int = 0
    updated: int = 0

    def record(self, outcome: UpsertOutcome) -> None:
        self.processed += 1
        if outcome is UpsertOutcome.ADDED:
            self.added += 1
        elif outcome is UpsertOutcome.UPDATED:
            self.updated += 1


class RankingPeriod(str, Enum):
    ALL = "all"
    YEAR = "year"
    HALF_YEAR = "half_year"
    MONTH = "month"


# How far back from now each ranking period reaches; None means no bound.
RANKING_WINDOWS: Dict[RankingPeriod, Optional[timedelta]] = {
    RankingPeriod.ALL: None,
    RankingPeriod.YEAR: timedelta(days=365),
    RankingPeriod.HALF_YEAR: timedelta(days=182),
    RankingPeriod.MONTH: timedelta(days=30),
}


@dataclass
class AuthorStats:
    author_email: str
    author_name: str
    commit_count: int
    additions: int
    deletions: int
    total: int


@dataclass
class MonthlyStats:
    month: str  # "YYYY-MM" of authored_date
    commit_count: int
    additions: int
    deletions: int
    total: int


@dataclass
class CommitterRanking:
    rank: int
    author_name: str
    author_email: str
    commit_count: int


class CommitsRepository(BaseRepository[Commit]):
    model = Commit

    def get_by_sha(self, project_id: int, sha: str) -> Optional[Commit]:
        with self.session() as s:
            return s.exec(
                select(Commit).where(Commit.project_id == project_id, Commit.sha == sha)
            ).first()

    def find_all_by_sha(self, project_id: int, shas: Iterable[str]) -> List[Commit]:
        shas = list(shas)
        if not shas:
            return []
        with self.session() as s:
            return list(
                s.exec(
                    select(Commit).where(Commit.project_id == project_id, Commit.sha.in_(shas))
                ).all()
            )

    def list_by_project(self, project_id: int, limit: int = 100, offset: int = 0) -> List[Commit]:
        """Commits of one project, newest authored first."""
        with self.session() as s:
            return list(
                s.exec(
                    select(Commit)
                    .where(Commit.project_id == project_id)
                    .order_by(Commit.authored_date.desc(), Commit.id.desc())
                    .offset(offset)
                    .limit(limit)
                ).all()
            )

    def count_by_project(self, project_id: int) -> int:
        with self.session() as s:
            return s.exec(
                select(func.count()).select_from(Commit).where(Commit.project_id == project_id)
            ).one()

    def find_by_author(
        self, project_id: int, author_email: str, limit: int = 100, offset: int = 0
    ) -> List[Commit]:
        """Commits by one author email, newest authored first."""
        with self.session() as s:
            return list(
                s.exec(
                    select(Commit)
                    .where(Commit.project_id == project_id, Commit.author_email == author_email)
                    .order_by(Commit.authored_date.desc(), Commit.id.desc())
                    .offset(offset)
                    .limit(limit)
                ).all()
            )

    def find_by_date_range(
        self,
        project_id: int,
        start: datetime,
        end: datetime,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Commit]:
        """Commits authored in [start, end), newest first."""
        with self.session() as s:
            return list(
                s.exec(
                    select(Commit)
                    .where(
                        Commit.project_id == project_id,
                        Commit.authored_date >= start,
                        Commit.authored_date < end,
                    )
                    .order_by(Commit.authored_date.desc(), Commit.id.desc())
                    .offset(offset)
                    .limit(limit)
                ).all()
            )

    def author_stats(self, project_id: int) -> List[AuthorStats]:
        """Commit count and line totals per author email, busiest first."""
        commit_count = func.count(Commit.id).label("commit_count")
        stmt = (
            select(
                Commit.author_email,
                func.max(Commit.author_name),
                commit_count,
                *_stat_sums(),
            )
            .where(Commit.project_id == project_id)
            .group_by(Commit.author_email)
            .order_by(commit_count.desc(), Commit.author_email)
        )
        with self.session() as s:
            rows = s.exec(stmt).all()
        return [AuthorStats(*row) for row in rows]

    def monthly_stats(self, project_id: int) -> List[MonthlyStats]:
        """Commit count and line totals per authored month, oldest month first."""
        month = self._month(Commit.authored_date).label("month")
        stmt = (
            select(month, func.count(Commit.id), *_stat_sums())
            .where(Commit.project_id == project_id)
            .group_by(month)
            .order_by(month)
        )
        with self.session() as s:
            rows = s.exec(stmt).all()
        return [MonthlyStats(*row) for row in rows]

    def committer_ranking(
        self,
        project_id: int,
        period: RankingPeriod = RankingPeriod.ALL,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[CommitterRanking]:
        """Top authors by commit count within the period, ranked from 1."""
        commit_count = func.count(Commit.id).label("commit_count")
        stmt = select(Commit.author_email, func.max(Commit.author_name), commit_count).where(
            Commit.project_id == project_id
        )
        window = RANKING_WINDOWS[RankingPeriod(period)]
        if window is not None:
            stmt = stmt.where(Commit.authored_date >= (now or utcnow()) - window)
        stmt = (
            stmt.group_by(Commit.author_email)
            .order_by(commit_count.desc(), Commit.author_email)
            .limit(limit)
        )
        with self.session() as s:
            rows = s.exec(stmt).all()
        return [
            CommitterRanking(rank=rank, author_name=name, author_email=email, commit_count=count)
            for rank, (email, name, count) in enumerate(rows, start=1)
        ]

    def _month(self, column):
        if self.engine.dialect.name == "sqlite":
            return func.strftime("%Y-%m", column)
        return func.to_char(column, "YYYY-MM")

    def upsert_commit(self, record: Dict[str, Any]) -> UpsertOutcome:
        """Insert or update a single commit record keyed by (project_id, sha)."""
        with self.session() as s:
            existing = s.exec(
                select(Commit).where(
                    Commit.project_id == record["project_id"],
                    Commit.sha == record["sha"],
                )
            ).first()
            outcome, _ = _apply(s, existing, record)
            s.commit()
            return outcome

    def upsert_many(self, project_id: int, records: List[Dict[str, Any]]) -> UpsertCounts:
        """Upsert one page of commit records in a single transaction.

        Records are applied in order; a SHA repeated within the page updates
        the row created earlier in the same call.
        """
        counts = UpsertCounts()
        if not records:
            return counts

        with self.session() as s:
            shas = {r["sha"] for r in records}
            by_sha: Dict[str, Commit] = {
                c.sha: c
                for c in s.exec(
                    select(Commit).where(Commit.project_id == project_id, Commit.sha.in_(shas))
                ).all()
            }
            for record in records:
                record = {**record, "project_id": project_id}
                existing = by_sha.get(record["sha"])
                outcome, by_sha[record["sha"]] = _apply(s, existing, record)
                counts.record(outcome)
            s.commit()
        return counts


def _apply(
    s: Session, existing: Optional[Commit], record: Dict[str, Any]
) -> Tuple[UpsertOutcome, Commit]:
    if existing is None:
        commit = Commit(**record)
        s.add(commit)
        return UpsertOutcome.ADDED, commit

    changed = False
    for field in TRACKED_FIELDS:
        if field in record and getattr(existing, field) != record[field]:
            setattr(existing, field, record[field])
            changed = True
    if not changed:
        return UpsertOutcome.UNCHANGED, existing
    existing.updated_at = utcnow()
    s.add(existing)
    return UpsertOutcome.UPDATED, existing


def _stat_sums():
    return (
        func.coalesce(func.sum(Commit.additions), 0),
        func.coalesce(func.sum(Commit.deletions), 0),
        func.coalesce(func.sum(Commit.total), 0),
    )
