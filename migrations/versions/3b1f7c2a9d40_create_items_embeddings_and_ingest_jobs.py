"""create items, item_embeddings and ingest_jobs

Revision ID: 3b1f7c2a9d40
Revises:
Create Date: 2026-10-19 10:12:41.118204

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3b1f7c2a9d40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

FACETS = ("aesthetic", "atmosphere", "mechanics", "narrative", "dynamics")


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector;")

    op.create_table(
        "items",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("item_type", sa.Text, nullable=False, server_default="game"),
        sa.Column("short_text", sa.Text, nullable=False, server_default=""),
        sa.Column("long_text", sa.Text, nullable=False, server_default=""),
        sa.Column("images", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("videos", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column(
            "tags",
            postgresql.JSONB,
            nullable=False,
            server_default="{}",
            comment="Tag -> weight",
        ),
        sa.Column("genres", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("categories", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("developers", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("publishers", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("review_summary", postgresql.JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # Raw SQL for the vector column, as with the earlier embeddings table
    op.execute(
        """
        CREATE TABLE item_embeddings (
            id UUID PRIMARY KEY,
            item_id BIGINT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
            facet TEXT NOT NULL,
            embedding vector(768) NOT NULL,
            source_type TEXT NOT NULL,
            provenance JSONB NOT NULL DEFAULT '{}',
            model TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_item_embeddings_item_facet UNIQUE (item_id, facet),
            CONSTRAINT ck_item_embeddings_source_type
                CHECK (source_type IN ('image', 'text', 'multimodal', 'video')),
            CONSTRAINT ck_item_embeddings_facet
                CHECK (facet IN ('aesthetic', 'atmosphere', 'mechanics', 'narrative', 'dynamics'))
        );
    """
    )

    # One HNSW index per facet so nearest-neighbour scans stay within a facet
    for facet in FACETS:
        op.execute(
            f"""
            CREATE INDEX item_embeddings_{facet}_hnsw
            ON item_embeddings USING hnsw (embedding vector_cosine_ops)
            WITH (m = 16, ef_construction = 200)
            WHERE facet = '{facet}';
        """
        )

    op.create_index("ix_item_embeddings_item_id", "item_embeddings", ["item_id"])

    op.create_table(
        "ingest_jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "source_ref",
            sa.Text,
            nullable=False,
            comment="Id, URL or title the caller submitted",
        ),
        sa.Column("item_id", sa.BigInteger, nullable=True),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="queued",
            comment="Job status: queued|running|succeeded|failed",
        ),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('queued', 'running', 'succeeded', 'failed')",
            name="ck_ingest_jobs_status",
        ),
    )

    op.create_index(
        "ix_ingest_jobs_source_ref_created_at",
        "ingest_jobs",
        ["source_ref", "created_at"],
    )

    # At most one active job per source reference
    op.create_index(
        "ix_ingest_jobs_active_source_ref",
        "ingest_jobs",
        ["source_ref"],
        unique=True,
        postgresql_where=sa.text("status IN ('queued', 'running')"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("ingest_jobs")
    for facet in FACETS:
        op.execute(f"DROP INDEX IF EXISTS item_embeddings_{facet}_hnsw;")
    op.drop_index("ix_item_embeddings_item_id", table_name="item_embeddings")
    op.drop_table("item_embeddings")
    op.drop_table("items")

    # Note: We don't drop the vector extension in case other tables use it
