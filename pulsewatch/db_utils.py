"""Database helpers that differ between PostgreSQL and the sqlite test database."""

from __future__ import annotations

from sqlalchemy import inspect
from sqlalchemy.orm import Session


def dialect_insert(db: Session, model):
    """Return an INSERT for ``model`` that supports ``on_conflict_do_nothing()``.

    Only the PostgreSQL and sqlite dialects expose ON CONFLICT, each from its own
    module, so the construct is picked from the session's bound engine.

    Example:
        stmt = dialect_insert(db, Device).values(name="gw-1", location="lab").on_conflict_do_nothing(
            index_elements=["name", "location"]
        )
        db.execute(stmt)
    """
    dialect = inspect(db.bind).dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert(model)
