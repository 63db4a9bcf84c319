# backend/app/repositories/base_repository.py
"""
Base Repository for the TutorHub scheduling engine

Shared data access for every repository:
- lookups by id, with an optional row lock
- create/delete that flush but never commit
- exact-match finders

Repositories never commit. Services own the unit of work, so any
integrity failure is rolled back here and surfaced as
RepositoryIntegrityError for the service to translate.
"""

import logging
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from app.database.session_utils import get_dialect_name

from ..core.exceptions import RepositoryException, RepositoryIntegrityError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Generic repository bound to one model class.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    def get_by_id(self, id: str) -> Optional[T]:
        try:
            return self.db.query(self.model).filter(self.model.id == id).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def get_by_id_for_update(self, id: str) -> Optional[T]:
        """
        Fetch an entity and hold its row lock until the transaction ends.

        On SQLite this holds the database write lock instead.
        """
        try:
            query = self._lock_rows(self.db.query(self.model).filter(self.model.id == id))
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to lock {self.model.__name__}: {str(e)}")

    def create(self, **kwargs: Any) -> T:
        """Add and flush a new entity so its id and constraints are checked now."""
        entity = self.model(**kwargs)
        try:
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as exc:
            self.logger.warning(
                "Integrity error creating %s: %s", self.model.__name__, exc.orig or exc
            )
            self.db.rollback()
            raise RepositoryIntegrityError(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def flush(self) -> None:
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise RepositoryIntegrityError(f"Integrity constraint violated: {exc}") from exc

    def delete(self, id: str) -> bool:
        """Delete by primary key. Returns False when nothing matched."""
        entity = self.get_by_id(id)
        if entity is None:
            return False
        try:
            self.db.delete(entity)
            self.db.flush()
            return True
        except IntegrityError as e:
            self.logger.error(f"Cannot delete {self.model.__name__} {id}: {str(e)}")
            self.db.rollback()
            raise RepositoryIntegrityError(f"Cannot delete due to existing references: {str(e)}")
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting {self.model.__name__} {id}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to delete {self.model.__name__}: {str(e)}")

    def count(self, **criteria: Any) -> int:
        try:
            return self.db.query(self.model).filter_by(**criteria).count()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to count {self.model.__name__}: {str(e)}")

    def find_one_by(self, **criteria: Any) -> Optional[T]:
        try:
            return self.db.query(self.model).filter_by(**criteria).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to find {self.model.__name__}: {str(e)}")

    def _lock_rows(self, query: Query) -> Query:
        """
        Make a query a locking read.

        PostgreSQL gets SELECT ... FOR UPDATE. SQLite has no row locks, so
        the database write lock is taken up front with an UPDATE that
        matches nothing; other writers then wait in the busy handler until
        this transaction ends. Pending changes are flushed first, then rows
        already in the identity map are refreshed from the locked read.
        """
        self.db.flush()
        if self.dialect_name != "sqlite":
            return query.with_for_update().populate_existing()

        table = self.model.__table__
        self.db.execute(
            update(table).where(table.c.id.is_(None)).values(id=table.c.id)
        )
        return query.populate_existing()
