"""SQLAlchemy database models for the knowledge base pipeline."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Boolean,
    Text,
)
from sqlalchemy.orm import relationship

from knowledge_base.database.session import Base
from knowledge_base.profiling.profile_models import (
    PROCESSING_STATUSES,
    SCHEMA_VERSION,
    SOURCE_TYPES,
)
from knowledge_base.timeutils import utc_now

if TYPE_CHECKING:
    from knowledge_base.profiling.profile_models import PartialProfile, UnifiedProfile


def _in_clause(column: str, values: tuple) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


class User(Base):
    """User table (identity collaborator, Better Auth layout).

    Table name 'user' and camelCase column names match Better Auth defaults.
    The pipeline only reads it: every knowledge source and unified profile
    hangs off a user id.
    """

    __tablename__ = "user"

    # Better Auth uses string identifiers for user id (not necessarily UUID).
    id = Column(String(255), primary_key=True, doc="Unique identifier (string, not UUID)")
    name = Column(String(255), nullable=False, default="", doc="Display name")
    email = Column(String(255), nullable=False, default="", doc="Email address")
    emailVerified = Column(Boolean, nullable=False, default=False)
    createdAt = Column(DateTime, default=utc_now, nullable=False)
    updatedAt = Column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )


class AuthSession(Base):
    """Bearer session tokens issued by the identity provider."""

    __tablename__ = "session"

    id = Column(String(255), primary_key=True, doc="Session ID (Better Auth)")
    userId = Column(
        String(255),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        doc="User ID (Better Auth)",
    )
    token = Column(String(255), nullable=False, unique=True, doc="Session token")
    expiresAt = Column(DateTime, nullable=False, doc="Expiration (Better Auth)")
    createdAt = Column(DateTime, default=utc_now, nullable=False)
    updatedAt = Column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )
    user = relationship("User", backref="sessions")


class KnowledgeSource(Base):
    """One ingested artifact and its Partial Profile.

    Rows are append-only: one row per successful ingestion call, keyed by the
    client-supplied source id. Rows are never auto-deleted so the unified
    profile can always be re-aggregated from them.
    """

    __tablename__ = "knowledge_sources"
    __table_args__ = (
        CheckConstraint(_in_clause("source_type", SOURCE_TYPES), name="ck_source_type"),
        CheckConstraint(
            _in_clause("processing_status", PROCESSING_STATUSES),
            name="ck_processing_status",
        ),
        Index("idx_knowledge_sources_user_id", "user_id"),
        Index("idx_knowledge_sources_type", "user_id", "source_type"),
    )

    id = Column(
        String(255),
        primary_key=True,
        doc="Client-supplied source id (sourceId on the request)",
    )
    user_id = Column(
        String(255),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        doc="Owning user",
    )
    source_type = Column(String(50), nullable=False, doc="resume, linkedin, github, ...")
    source_identifier = Column(Text, nullable=True, doc="Filename or URL")
    raw_content = Column(JSON, nullable=True, doc="Opaque snapshot of the acquired input")
    parsed_data = Column(JSON, nullable=False, doc="Partial Profile")
    metadata_ = Column(
        "metadata", JSON, nullable=True, doc="File size, page count, fetch details, ..."
    )
    processing_status = Column(String(20), nullable=False, default="completed")
    error_message = Column(Text, nullable=True)
    schema_version = Column(String(20), nullable=False, default=SCHEMA_VERSION)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    @classmethod
    def from_extraction(
        cls,
        source_id: str,
        user_id: str,
        source_type: str,
        profile: "PartialProfile",
        source_identifier: Optional[str] = None,
        raw_content: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> "KnowledgeSource":
        """Create a completed KnowledgeSource from a validated Partial Profile."""
        return cls(
            id=source_id,
            user_id=user_id,
            source_type=source_type,
            source_identifier=source_identifier,
            raw_content=raw_content,
            parsed_data=profile.model_dump(mode="json"),
            metadata_=metadata,
            processing_status="completed",
            schema_version=SCHEMA_VERSION,
        )


class UnifiedProfileRecord(Base):
    """The singleton Unified Profile row per user.

    Replaced wholesale on every successful aggregation (last writer wins).
    """

    __tablename__ = "unified_profiles"

    user_id = Column(
        String(255),
        ForeignKey("user.id", ondelete="CASCADE"),
        primary_key=True,
        doc="Owning user (one row per user)",
    )
    profile = Column(JSON, nullable=False, doc="Unified Profile")
    skills = Column(
        JSON,
        nullable=False,
        default=list,
        doc="Flat deduplicated skill index used for feature gating",
    )
    schema_version = Column(String(20), nullable=False, default=SCHEMA_VERSION)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    def apply(self, profile: "UnifiedProfile", skills: list, updated_at: datetime) -> None:
        """Replace every profile field with a freshly merged profile."""
        self.profile = profile.model_dump(mode="json")
        self.skills = list(skills)
        self.schema_version = profile.schema_version
        self.updated_at = updated_at
