"""Generic repository and the persistence gateway for the pipeline."""

import logging
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Callable, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from knowledge_base.database.models import KnowledgeSource, UnifiedProfileRecord
from knowledge_base.database.session import with_db_session
from knowledge_base.errors import ParseError, PersistenceError
from knowledge_base.profiling.profile_models import PartialProfile, SourceRef, UnifiedProfile

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = Callable[[], AbstractContextManager]


class GenericRepository(Generic[T]):
    """Generic repository for database operations.

    Provides common CRUD operations for any SQLAlchemy model.

    Example:
        ```python
        with with_db_session() as session:
            repo = GenericRepository(session, KnowledgeSource)
            source = repo.get(source_id)
            mine = repo.filter_by(user_id=user_id)
        ```
    """

    def __init__(self, session: Session, model: Type[T]):
        """Initialize repository.

        Args:
            session: SQLAlchemy session instance
            model: SQLAlchemy model class
        """
        self.session = session
        self.model = model

    def create(self, obj: T) -> T:
        """Create a new record.

        Args:
            obj: Model instance to create

        Returns:
            Created model instance with database defaults populated
        """
        self.session.add(obj)  # Stage the object
        self.session.flush()  # Send INSERT now so integrity errors surface here
        self.session.refresh(obj)  # Refresh to get database-generated values
        return obj

    def get(self, id: Any) -> Optional[T]:
        """Get a record by primary key.

        Args:
            id: Primary key value

        Returns:
            Model instance or None if not found
        """
        return self.session.get(self.model, id)

    def update(self, obj: T) -> T:
        """Flush pending changes on an existing record.

        Args:
            obj: Model instance with updated values

        Returns:
            Updated model instance
        """
        self.session.flush()
        self.session.refresh(obj)
        return obj

    def delete(self, obj: T) -> None:
        """Delete a record.

        Args:
            obj: Model instance to delete
        """
        self.session.delete(obj)
        self.session.flush()

    def count(self, **kwargs) -> int:
        """Count records, optionally filtered by keyword arguments."""
        return self.session.query(self.model).filter_by(**kwargs).count()

    def filter_by(self, **kwargs) -> List[T]:
        """Filter records by keyword arguments.

        Args:
            **kwargs: Field name and value pairs to filter by

        Returns:
            List of matching model instances
        """
        return self.session.query(self.model).filter_by(**kwargs).all()

    def find_one(self, **kwargs) -> Optional[T]:
        """Find a single record matching the criteria.

        Args:
            **kwargs: Field name and value pairs to filter by

        Returns:
            First matching model instance or None
        """
        return self.session.query(self.model).filter_by(**kwargs).first()


class StoredSource(BaseModel):
    """A KnowledgeSource row read back through the gateway (detached, validated)."""

    id: str
    user_id: str
    source_type: str
    source_identifier: Optional[str] = None
    processing_status: str
    error_message: Optional[str] = None
    parsed_data: PartialProfile
    metadata: Optional[dict] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: KnowledgeSource) -> "StoredSource":
        try:
            parsed = PartialProfile.model_validate(row.parsed_data or {})
        except ValidationError as e:
            raise ParseError(
                f"Stored knowledge source {row.id} failed schema validation"
            ) from e
        return cls(
            id=row.id,
            user_id=row.user_id,
            source_type=row.source_type,
            source_identifier=row.source_identifier,
            processing_status=row.processing_status,
            error_message=row.error_message,
            parsed_data=parsed,
            metadata=row.metadata_,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_source_ref(self) -> SourceRef:
        return SourceRef(
            type=self.source_type,
            identifier=self.source_identifier,
            created_at=self.created_at,
        )


class StoredUnifiedProfile(BaseModel):
    user_id: str
    profile: UnifiedProfile
    skills: List[str]
    schema_version: str
    created_at: datetime
    updated_at: datetime


class KnowledgeSourceGateway:
    """Persistence gateway: append-only sources and the singleton unified profile.

    Each call runs in its own session/transaction obtained from
    ``session_factory``. Store failures surface as ``PersistenceError``.
    """

    def __init__(self, session_factory: SessionFactory = with_db_session):
        self.session_factory = session_factory

    def insert_source(
        self,
        source_id: str,
        user_id: str,
        source_type: str,
        profile: PartialProfile,
        source_identifier: Optional[str] = None,
        raw_content: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> StoredSource:
        """Insert one completed KnowledgeSource row.

        Never upserts: reusing a source id is an integrity failure.

        Raises:
            PersistenceError: If the insert fails
        """
        try:
            with self.session_factory() as session:
                repo = GenericRepository(session, KnowledgeSource)
                row = repo.create(
                    KnowledgeSource.from_extraction(
                        source_id=source_id,
                        user_id=user_id,
                        source_type=source_type,
                        profile=profile,
                        source_identifier=source_identifier,
                        raw_content=raw_content,
                        metadata=metadata,
                    )
                )
                stored = StoredSource.from_row(row)
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert knowledge source {source_id}: {e}")
            raise PersistenceError(f"Database save failed: {e.__class__.__name__}") from e

        logger.info(f"Saved {source_type} knowledge source {source_id} for user {user_id}")
        return stored

    def delete_source(self, user_id: str, source_id: str) -> bool:
        """Delete one of the user's sources.

        Returns:
            False if the user owns no source with that id

        Raises:
            PersistenceError: If the delete fails
        """
        try:
            with self.session_factory() as session:
                repo = GenericRepository(session, KnowledgeSource)
                row = repo.find_one(id=source_id, user_id=user_id)
                if row is None:
                    return False
                repo.delete(row)
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete knowledge source {source_id}: {e}")
            raise PersistenceError(f"Database delete failed: {e.__class__.__name__}") from e

        logger.info(f"Deleted knowledge source {source_id} for user {user_id}")
        return True

    def list_sources(self, user_id: str) -> List[StoredSource]:
        """All of a user's sources, most recent first."""
        return self._query_sources(user_id, completed_only=False)

    def list_completed_sources(self, user_id: str) -> List[StoredSource]:
        """A user's completed sources, most recent first (aggregation input)."""
        return self._query_sources(user_id, completed_only=True)

    def _query_sources(self, user_id: str, completed_only: bool) -> List[StoredSource]:
        try:
            with self.session_factory() as session:
                query = session.query(KnowledgeSource).filter(
                    KnowledgeSource.user_id == user_id
                )
                if completed_only:
                    query = query.filter(KnowledgeSource.processing_status == "completed")
                rows = query.order_by(
                    desc(KnowledgeSource.created_at), desc(KnowledgeSource.id)
                ).all()
                return [StoredSource.from_row(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to load knowledge sources for user {user_id}: {e}")
            raise PersistenceError(f"Failed to load knowledge sources: {e.__class__.__name__}") from e

    def upsert_unified_profile(
        self,
        user_id: str,
        profile: UnifiedProfile,
        skills: List[str],
        updated_at: datetime,
    ) -> StoredUnifiedProfile:
        """Create the user's Unified Profile row or replace it wholesale.

        Last writer wins; there is no optimistic concurrency check.

        Raises:
            PersistenceError: If the write fails
        """
        try:
            with self.session_factory() as session:
                repo = GenericRepository(session, UnifiedProfileRecord)
                record = repo.get(user_id)
                if record is None:
                    record = UnifiedProfileRecord(user_id=user_id, created_at=updated_at)
                    record.apply(profile, skills, updated_at)
                    repo.create(record)
                    logger.info(f"Created unified profile for user {user_id}")
                else:
                    record.apply(profile, skills, updated_at)
                    repo.update(record)
                    logger.info(f"Replaced unified profile for user {user_id}")
                return self._to_stored(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save unified profile for user {user_id}: {e}")
            raise PersistenceError(f"Database save failed: {e.__class__.__name__}") from e

    def get_unified_profile(self, user_id: str) -> Optional[StoredUnifiedProfile]:
        try:
            with self.session_factory() as session:
                record = GenericRepository(session, UnifiedProfileRecord).get(user_id)
                return self._to_stored(record) if record is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load unified profile: {e.__class__.__name__}") from e

    def count_unified_profiles(self, user_id: str) -> int:
        with self.session_factory() as session:
            return GenericRepository(session, UnifiedProfileRecord).count(user_id=user_id)

    @staticmethod
    def _to_stored(record: UnifiedProfileRecord) -> StoredUnifiedProfile:
        try:
            profile = UnifiedProfile.model_validate(record.profile)
        except ValidationError as e:
            raise ParseError(
                f"Stored unified profile for user {record.user_id} failed schema validation"
            ) from e
        return StoredUnifiedProfile(
            user_id=record.user_id,
            profile=profile,
            skills=list(record.skills or []),
            schema_version=record.schema_version,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
