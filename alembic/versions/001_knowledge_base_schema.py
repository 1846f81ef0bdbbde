"""knowledge_base_schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SOURCE_TYPES = (
    "resume",
    "linkedin",
    "github",
    "personal_website",
    "project_document",
    "portfolio",
    "other_document",
    "manual_text",
)
PROCESSING_STATUSES = ("pending", "processing", "completed", "failed")


def _in_clause(column: str, values: tuple) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def upgrade() -> None:
    """Create identity, knowledge source and unified profile tables."""
    # user / session (Better Auth layout, string ids)
    op.create_table(
        "user",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column("emailVerified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("createdAt", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updatedAt", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "session",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column(
            "userId",
            sa.String(255),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token", sa.String(255), nullable=False, unique=True),
        sa.Column("expiresAt", sa.DateTime(), nullable=False),
        sa.Column("createdAt", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updatedAt", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # knowledge_sources: one row per successful ingestion, append-only
    op.create_table(
        "knowledge_sources",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(255),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_type", sa.String(50), nullable=False),
        sa.Column("source_identifier", sa.Text(), nullable=True),
        sa.Column("raw_content", sa.JSON(), nullable=True),
        sa.Column("parsed_data", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("schema_version", sa.String(20), nullable=False, server_default="1.0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(_in_clause("source_type", SOURCE_TYPES), name="ck_source_type"),
        sa.CheckConstraint(
            _in_clause("processing_status", PROCESSING_STATUSES),
            name="ck_processing_status",
        ),
    )
    op.create_index("idx_knowledge_sources_user_id", "knowledge_sources", ["user_id"])
    op.create_index(
        "idx_knowledge_sources_type", "knowledge_sources", ["user_id", "source_type"]
    )

    # unified_profiles: singleton per user, replaced on every aggregation
    op.create_table(
        "unified_profiles",
        sa.Column(
            "user_id",
            sa.String(255),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("profile", sa.JSON(), nullable=False),
        sa.Column("skills", sa.JSON(), nullable=False),
        sa.Column("schema_version", sa.String(20), nullable=False, server_default="1.0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop all knowledge base tables."""
    op.drop_table("unified_profiles")
    op.drop_index("idx_knowledge_sources_type", table_name="knowledge_sources")
    op.drop_index("idx_knowledge_sources_user_id", table_name="knowledge_sources")
    op.drop_table("knowledge_sources")
    op.drop_table("session")
    op.drop_table("user")
