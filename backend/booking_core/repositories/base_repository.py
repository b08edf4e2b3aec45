# backend/booking_core/repositories/base_repository.py
"""
Base Repository Pattern for the booking core.

Provides the foundation for all repository classes with:
- Common read/create operations
- Type safety with generics
- Transaction support (commit/rollback is owned by services)
- ``transact``: the atomic read-modify-write primitive every reservation
  state change goes through

The repository pattern separates data access from business logic,
making the code more testable and maintainable.
"""

import logging
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ConcurrentUpdateException, RepositoryException
from ..database import get_dialect_name

# Type variable for generic model support
T = TypeVar("T")

# A mutation inspects the current row (None when absent) and returns the
# column writes to apply, or None for "no change". It may raise a domain
# exception to abort the whole transaction.
Mutation = Callable[[Optional[T]], Optional[Dict[str, Any]]]

DEFAULT_TRANSACT_ATTEMPTS = 3


class BaseRepository(Generic[T]):
    """
    Concrete base repository implementation with common data access patterns.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        """
        Initialize repository with database session and model.

        Args:
            db: SQLAlchemy session (managed by service layer)
            model: SQLAlchemy model class
        """
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    def get_by_id(self, id: str) -> Optional[T]:
        """Retrieve an entity by its primary key."""
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def create(self, **kwargs) -> T:
        """
        Create a new entity.

        Note: Does NOT commit - transaction management is handled by service layer.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()  # Get ID without committing
            return entity
        except IntegrityError as exc:
            self.logger.error(
                "Integrity error creating %s: %s", self.model.__name__, exc, exc_info=True
            )
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def find_by(self, **kwargs) -> List[T]:
        """Find entities by exact-match criteria."""
        try:
            return list(self.db.execute(select(self.model).filter_by(**kwargs)).scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding by criteria: {str(e)}")
            raise RepositoryException(f"Failed to find records: {str(e)}")

    def get_for_update(self, id: str) -> Optional[T]:
        """
        Read the current committed state of a row, locking it on PostgreSQL.

        SQLite has no row locks; its transactions begin IMMEDIATE instead
        (see ``database.create_db_engine``), which serialises writers.
        """
        stmt = (
            select(self.model)
            .where(self.model.id == id)
            .execution_options(populate_existing=True)
        )
        if self.dialect_name == "postgresql":
            stmt = stmt.with_for_update()
        try:
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to read {self.model.__name__}: {str(e)}")

    def transact(
        self,
        id: str,
        mutate: Mutation,
        max_attempts: int = DEFAULT_TRANSACT_ATTEMPTS,
    ) -> Optional[T]:
        """
        Atomically read a row, decide on writes, and apply them.

        The write is a compare-and-set on the ``version`` column
        (``UPDATE ... WHERE id = :id AND version = :read_version``). Losing the
        race re-reads and re-runs ``mutate``; after ``max_attempts`` losses a
        ConcurrentUpdateException is raised. Runs inside the caller's
        transaction and never commits.

        Returns:
            The row as it stands after the write (or unchanged when ``mutate``
            returned no writes), None if the row does not exist.
        """
        self.db.flush()
        for attempt in range(1, max_attempts + 1):
            row = self.get_for_update(id)
            writes = mutate(row)
            if not writes:
                return row
            if row is None:
                raise RepositoryException(
                    f"Cannot write to missing {self.model.__name__} {id}"
                )

            read_version = row.version
            stmt = (
                update(self.model)
                .where(self.model.id == id, self.model.version == read_version)
                .values(**writes, version=read_version + 1)
                .execution_options(synchronize_session=False)
            )
            try:
                result = self.db.execute(stmt)
            except SQLAlchemyError as e:
                self.logger.error(f"Error updating {self.model.__name__} {id}: {str(e)}")
                raise RepositoryException(f"Failed to update {self.model.__name__}: {str(e)}")

            if result.rowcount == 1:
                self.db.refresh(row)
                return row

            self.logger.warning(
                "Lost compare-and-set race",
                extra={
                    "model": self.model.__name__,
                    "entity_id": id,
                    "read_version": read_version,
                    "attempt": attempt,
                },
            )

        raise ConcurrentUpdateException(self.model.__name__, id)
