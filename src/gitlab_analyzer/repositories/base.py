from contextlib import contextmanager
from typing import Any, Dict, Generic, Iterator, List, Optional, Type, TypeVar

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from gitlab_analyzer.db.errors import classify_db_error

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """Generic CRUD over one SQLModel table.

    Each call opens its own short-lived session on the shared engine, so a
    repository instance is safe to share between coroutines and requests.
    SQLAlchemy errors leave the repository as DatabaseError.
    """

    model: Type[ModelType]

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as s:
                yield s
        except SQLAlchemyError as exc:
            raise classify_db_error(exc) from exc

    def get_by_id(self, id: int) -> Optional[ModelType]:
        with self.session() as s:
            return s.get(self.model, id)

    def list_all(self, limit: Optional[int] = 100, offset: int = 0) -> List[ModelType]:
        with self.session() as s:
            stmt = select(self.model).order_by(self.model.id).offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(s.exec(stmt).all())

    def count(self) -> int:
        with self.session() as s:
            return s.exec(select(func.count()).select_from(self.model)).one()

    def create(self, data: Dict[str, Any]) -> ModelType:
        with self.session() as s:
            obj = self.model(**data)
            s.add(obj)
            s.commit()
            s.refresh(obj)
            return obj

    def update(self, id: int, data: Dict[str, Any]) -> Optional[ModelType]:
        with self.session() as s:
            obj = s.get(self.model, id)
            if obj is None:
                return None
            for field, value in data.items():
                if hasattr(obj, field):
                    setattr(obj, field, value)
            s.add(obj)
            s.commit()
            s.refresh(obj)
            return obj

    def delete(self, id: int) -> bool:
        with self.session() as s:
            obj = s.get(self.model, id)
            if obj is None:
                return False
            s.delete(obj)
            s.commit()
            return True
