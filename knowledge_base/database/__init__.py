"""Database module for the knowledge base pipeline."""

from knowledge_base.database.session import (
    Base,
    SessionLocal,
    db_session,
    engine,
    with_db_session,
    get_connection_string,
)
from knowledge_base.database.models import (
    AuthSession,
    KnowledgeSource,
    UnifiedProfileRecord,
    User,
)
from knowledge_base.database.repository import (
    GenericRepository,
    KnowledgeSourceGateway,
    StoredSource,
    StoredUnifiedProfile,
)

__all__ = [
    "Base",
    "SessionLocal",
    "db_session",
    "engine",
    "with_db_session",
    "get_connection_string",
    "AuthSession",
    "KnowledgeSource",
    "UnifiedProfileRecord",
    "User",
    "GenericRepository",
    "KnowledgeSourceGateway",
    "StoredSource",
    "StoredUnifiedProfile",
]
