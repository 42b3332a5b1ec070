"""
Database error classification.

Every SQLAlchemy exception raised by a repository is converted into a single
DatabaseError carrying a DbErrorKind tag plus whatever structured detail the
driver exposed (constraint, table, column). Callers branch on `kind` or
`retryable` instead of on exception subclasses.

Postgres (psycopg) exposes SQLSTATE codes and a `diag` object on the driver
exception; SQLite only gives a message string, so both are parsed.
"""
import re
from enum import Enum
from typing import Optional

from sqlalchemy import exc as sa_exc


class DbErrorKind(str, Enum):
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    UNIQUE_CONSTRAINT = "unique_constraint"
    CONSTRAINT_VIOLATION = "constraint_violation"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({DbErrorKind.CONNECTION, DbErrorKind.TIMEOUT})

# SQLSTATE codes (Postgres)
_PG_UNIQUE = "23505"
_PG_QUERY_CANCELED = "57014"

_SQLITE_CONSTRAINT_RE = re.compile(
    r"(?P<what>UNIQUE|NOT NULL|FOREIGN KEY|CHECK) constraint failed(?::\s*(?P<detail>.+))?",
    re.IGNORECASE,
)


class DatabaseError(Exception):
    """A classified persistence failure."""

    def __init__(
        self,
        kind: DbErrorKind,
        message: str,
        *,
        constraint: Optional[str] = None,
        table: Optional[str] = None,
        column: Optional[str] = None,
        original: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.constraint = constraint
        self.table = table
        self.column = column
        self.original = original

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return f"DatabaseError(kind={self.kind.value!r}, message={self.message!r})"


def classify_db_error(error: BaseException) -> DatabaseError:
    """Map a SQLAlchemy (or driver) exception onto a DatabaseError."""
    if isinstance(error, DatabaseError):
        return error

    message = str(getattr(error, "orig", None) or error)

    if isinstance(error, sa_exc.TimeoutError):
        # QueuePool exhausted
        return DatabaseError(DbErrorKind.TIMEOUT, message, original=error)

    if isinstance(error, sa_exc.IntegrityError):
        return _classify_integrity_error(error, message)

    if isinstance(error, sa_exc.DBAPIError):
        code = _sqlstate(error)
        if code == _PG_QUERY_CANCELED or "timeout" in message.lower():
            return DatabaseError(DbErrorKind.TIMEOUT, message, original=error)
        if (
            error.connection_invalidated
            or isinstance(error, (sa_exc.OperationalError, sa_exc.InterfaceError))
        ):
            if "locked" in message.lower():
                return DatabaseError(DbErrorKind.TIMEOUT, message, original=error)
            return DatabaseError(DbErrorKind.CONNECTION, message, original=error)

    if isinstance(error, sa_exc.DisconnectionError):
        return DatabaseError(DbErrorKind.CONNECTION, message, original=error)

    return DatabaseError(DbErrorKind.UNKNOWN, message, original=error)


def _classify_integrity_error(error: sa_exc.IntegrityError, message: str) -> DatabaseError:
    code = _sqlstate(error)
    diag = getattr(error.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    table = getattr(diag, "table_name", None)
    column = getattr(diag, "column_name", None)

    if code is not None:
        kind = (
            DbErrorKind.UNIQUE_CONSTRAINT
            if code == _PG_UNIQUE
            else DbErrorKind.CONSTRAINT_VIOLATION
        )
        return DatabaseError(
            kind, message, constraint=constraint, table=table, column=column, original=error
        )

    match = _SQLITE_CONSTRAINT_RE.search(message)
    if match:
        what = match.group("what").upper()
        detail = (match.group("detail") or "").strip()
        # "commits.project_id, commits.sha" -> table "commits", columns joined
        parts = [p.strip() for p in detail.split(",") if p.strip()]
        if parts and "." in parts[0]:
            table = parts[0].split(".", 1)[0]
            column = ", ".join(p.split(".", 1)[1] for p in parts if "." in p)
        kind = (
            DbErrorKind.UNIQUE_CONSTRAINT
            if what == "UNIQUE"
            else DbErrorKind.CONSTRAINT_VIOLATION
        )
        return DatabaseError(kind, message, table=table, column=column, original=error)

    return DatabaseError(DbErrorKind.CONSTRAINT_VIOLATION, message, original=error)


def _sqlstate(error: BaseException) -> Optional[str]:
    orig = getattr(error, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return str(code) if code else None
