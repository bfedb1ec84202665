"""
Database models for items, facet embeddings and ingest jobs.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from facetmatch.infra.database import Base

# Column width of item_embeddings.embedding; the migration creates vector(768)
EMBEDDING_DIMENSIONS = 768


class JobStatus(str, Enum):
    """Ingest job status enumeration."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING)
TERMINAL_JOB_STATUSES = (JobStatus.SUCCEEDED, JobStatus.FAILED)

# from-status -> allowed to-statuses
JOB_TRANSITIONS: dict[JobStatus, tuple[JobStatus, ...]] = {
    JobStatus.QUEUED: (JobStatus.RUNNING, JobStatus.FAILED),
    JobStatus.RUNNING: (JobStatus.SUCCEEDED, JobStatus.FAILED),
    JobStatus.SUCCEEDED: (),
    JobStatus.FAILED: (),
}


def allowed_from(target: JobStatus) -> list[JobStatus]:
    """Statuses a job may be in to move to ``target``."""
    return [source for source, targets in JOB_TRANSITIONS.items() if target in targets]


class Item(Base):
    """Latest normalized catalog metadata per item."""

    __tablename__ = "items"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    item_type: Mapped[str] = mapped_column(Text, nullable=False, default="game")
    short_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    long_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    images: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    videos: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    tags: Mapped[dict[str, float]] = mapped_column(JSONB, nullable=False, default=dict)
    genres: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    categories: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    developers: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    publishers: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    review_summary: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Item(id={self.id}, title={self.title!r})>"


class ItemEmbedding(Base):
    """
    One embedding per item and facet.

    Vectors are unit-norm; per-facet HNSW cosine indexes are created by the
    migration.
    """

    __tablename__ = "item_embeddings"
    __table_args__ = (
        UniqueConstraint("item_id", "facet", name="uq_item_embeddings_item_facet"),
        CheckConstraint(
            "source_type IN ('image', 'text', 'multimodal', 'video')",
            name="ck_item_embeddings_source_type",
        ),
        CheckConstraint(
            "facet IN ('aesthetic', 'atmosphere', 'mechanics', 'narrative', 'dynamics')",
            name="ck_item_embeddings_facet",
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("items.id", ondelete="CASCADE"), nullable=False
    )
    facet: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS), nullable=False
    )
    source_type: Mapped[str] = mapped_column(Text, nullable=False)
    provenance: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=dict, server_default="{}"
    )
    model: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ItemEmbedding(item_id={self.item_id}, facet={self.facet}, model={self.model})>"


class IngestJob(Base):
    """Append-only ingestion job record."""

    __tablename__ = "ingest_jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'running', 'succeeded', 'failed')",
            name="ck_ingest_jobs_status",
        ),
        Index("ix_ingest_jobs_source_ref_created_at", "source_ref", "created_at"),
        # At most one active job per source
        Index(
            "ix_ingest_jobs_active_source_ref",
            "source_ref",
            unique=True,
            postgresql_where=text("status IN ('queued', 'running')"),
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    source_ref: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Id, URL or title the caller submitted"
    )
    item_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.QUEUED.value,
        comment="Job status: queued|running|succeeded|failed",
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<IngestJob(id={self.id}, source_ref={self.source_ref!r}, status={self.status})>"
