"""
Additive schema migrations.

create_all() never alters existing tables, so databases created before the
run-claim columns existed get them here: ALTER TABLE ADD COLUMN for new
columns, CREATE INDEX for new indexes. Each step is idempotent and is
skipped when already applied.

Called automatically from create_tables() after create_all().
"""
from sqlalchemy import inspect, text


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times; checks column and index existence before altering.

    Args:
        engine: SQLAlchemy engine.
    """
    from gitlab_analyzer.models.sync import RUNNING_CLAIM_INDEX

    with engine.connect() as conn:
        # sync_logs: heartbeat and one-running-log-per-project claim
        if _add_column_if_missing(conn, "sync_logs", "heartbeat_at", "TIMESTAMP"):
            conn.execute(text("UPDATE sync_logs SET heartbeat_at = started_at"))
        if inspect(conn).has_table("sync_logs"):
            RUNNING_CLAIM_INDEX.create(conn, checkfirst=True)

        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> bool:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name.
        column: Column name to add.
        col_type: Column type (and optional default) as SQL text.

    Returns:
        True if the column was added.
    """
    inspector = inspect(conn)
    if not inspector.has_table(table):
        return False
    existing_columns = {col["name"] for col in inspector.get_columns(table)}
    if column in existing_columns:
        return False
    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
    return True
