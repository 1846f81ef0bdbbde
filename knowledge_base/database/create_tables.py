"""Create the knowledge base tables directly from the SQLAlchemy models.

Alembic (``run_migrations``) is the normal path; this script is for local
databases and test fixtures.

Usage:
    python -m knowledge_base.database.create_tables [--overwrite]
"""

import logging
import os
import sys

from sqlalchemy import inspect

from knowledge_base.database.session import Base, engine

# Import all models to ensure they're registered with Base.metadata
from knowledge_base.database.models import (  # noqa: F401
    AuthSession,
    KnowledgeSource,
    UnifiedProfileRecord,
    User,
)

logger = logging.getLogger(__name__)


def create_tables(overwrite: bool = False, bind=None) -> list:
    """Create all tables registered on Base.metadata.

    Args:
        overwrite: Drop the existing model tables first. By default only
            missing tables are created, so repeated runs are harmless.
        bind: Engine to use (defaults to the process engine)

    Returns:
        Names of the tables that already existed before this run
    """
    bind = bind or engine
    existing = [t for t in Base.metadata.tables if t in inspect(bind).get_table_names()]

    if existing:
        logger.info(f"Found {len(existing)} existing table(s): {', '.join(existing)}")
        if overwrite:
            logger.warning("Overwrite mode: dropping existing tables")
            Base.metadata.drop_all(bind=bind, tables=[Base.metadata.tables[t] for t in existing])

    Base.metadata.create_all(bind=bind)
    logger.info(f"Tables ready: {', '.join(Base.metadata.tables)}")
    return existing


def drop_tables(bind=None) -> None:
    Base.metadata.drop_all(bind=bind or engine)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    overwrite = "--overwrite" in sys.argv or "-o" in sys.argv
    if os.getenv("OVERWRITE_TABLES", "").lower() in ("true", "1", "yes"):
        overwrite = True
    create_tables(overwrite=overwrite)
