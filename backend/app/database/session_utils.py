"""
Dialect helpers for SQLAlchemy sessions.

Row locking differs between Postgres and the SQLite test database, so
repositories ask the session which dialect it is bound to.
"""

from __future__ import annotations

from sqlalchemy.exc import NoInspectionAvailable, UnboundExecutionError
from sqlalchemy.orm import Session


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """Return the bound dialect's name, or ``default`` for an unbound session."""
    try:
        bind = session.get_bind()
    except (UnboundExecutionError, NoInspectionAvailable):
        return default
    dialect = getattr(bind, "dialect", None)
    return getattr(dialect, "name", None) or default
