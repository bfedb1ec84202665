"""
Persistence for items, facet embeddings and ingest jobs.

``Repository`` is the contract the pipeline depends on. ``SqlAlchemyRepository``
implements it on Postgres + pgvector; ``InMemoryRepository`` (storage.memory)
mirrors the same semantics for development and tests.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import Protocol, TypeVar
from uuid import UUID, uuid4

import numpy as np
from sqlalchemy import select, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.sql import func

from facetmatch.config.logging import get_logger
from facetmatch.infra.database import Database
from facetmatch.v1.catalog.schemas import CatalogItem, ReviewSummary
from facetmatch.v1.core.exceptions import (
    PersistenceConflict,
    PersistenceConnectionError,
    PersistenceError,
    PersistenceUnavailable,
)
from facetmatch.v1.core.retry import RetryPolicy, retry_async
from facetmatch.v1.embeddings.schemas import FacetEmbedding
from facetmatch.v1.facets.config import FacetType, SourceType
from facetmatch.v1.storage.models import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    IngestJob,
    Item,
    ItemEmbedding,
    JobStatus,
    allowed_from,
)
from facetmatch.v1.storage.schemas import JobRecord

logger = get_logger(__name__)

T = TypeVar("T")

ACTIVE_JOB_INDEX = "ix_ingest_jobs_active_source_ref"

FacetVectors = dict[int, dict[FacetType, Sequence[float]]]


class Repository(Protocol):
    """Storage contract used by the orchestrator and the retriever."""

    # Whether nearest_item_ids honours ``limit`` with an index-backed search
    prefilters: bool

    async def upsert_item(self, item: CatalogItem) -> None: ...

    async def get_item(self, item_id: int) -> CatalogItem | None: ...

    async def upsert_embeddings(self, embeddings: list[FacetEmbedding]) -> int: ...

    async def get_embeddings(self, item_id: int) -> dict[FacetType, FacetEmbedding]: ...

    async def nearest_item_ids(
        self,
        facet: FacetType,
        vector: Sequence[float],
        limit: int | None,
        exclude_item_id: int | None = None,
    ) -> list[int]: ...

    async def get_facet_vectors(
        self, item_ids: Sequence[int], facets: Sequence[FacetType]
    ) -> FacetVectors: ...

    async def create_job_or_get_active(
        self, source_ref: str, status: JobStatus
    ) -> tuple[JobRecord, bool]: ...

    async def get_job(self, job_id: UUID) -> JobRecord | None: ...

    async def latest_job(self, source_ref: str) -> JobRecord | None: ...

    async def transition_job(
        self,
        job_id: UUID,
        status: JobStatus,
        *,
        item_id: int | None = None,
        error: str | None = None,
    ) -> bool: ...

    async def close(self) -> None: ...


def translate_db_error(e: Exception) -> PersistenceError:
    """Map SQLAlchemy/driver failures onto the persistence taxonomy."""
    if isinstance(e, sa_exc.IntegrityError):
        return PersistenceConflict(f"Write conflict: {e.orig}")
    if isinstance(e, sa_exc.TimeoutError):
        return PersistenceUnavailable("Database connection pool exhausted")
    if isinstance(e, (sa_exc.OperationalError, sa_exc.InterfaceError, OSError)):
        return PersistenceConnectionError(f"Database connection failed: {e}")
    if isinstance(e, sa_exc.DBAPIError) and e.connection_invalidated:
        return PersistenceConnectionError(f"Database connection lost: {e}")
    return PersistenceError(f"Database error: {e}")


def item_to_row(item: CatalogItem) -> dict:
    row = item.model_dump(exclude={"review_summary"})
    row["review_summary"] = (
        item.review_summary.model_dump() if item.review_summary else None
    )
    return row


def row_to_item(row: Item) -> CatalogItem:
    return CatalogItem(
        id=row.id,
        title=row.title,
        item_type=row.item_type,
        short_text=row.short_text,
        long_text=row.long_text,
        images=row.images or [],
        videos=row.videos or [],
        tags=row.tags or {},
        genres=row.genres or [],
        categories=row.categories or [],
        developers=row.developers or [],
        publishers=row.publishers or [],
        review_summary=ReviewSummary(**row.review_summary) if row.review_summary else None,
    )


class SqlAlchemyRepository:
    """Postgres + pgvector repository on SQLAlchemy asyncio."""

    prefilters = True

    def __init__(
        self,
        database: Database,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.database = database
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def close(self) -> None:
        await self.database.close()

    async def _run(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        async def attempt() -> T:
            try:
                return await fn()
            except (sa_exc.SQLAlchemyError, OSError) as e:
                raise translate_db_error(e) from e

        return await retry_async(
            attempt, self.retry_policy, operation=f"db.{operation}", sleep=self._sleep
        )

    # Items

    async def upsert_item(self, item: CatalogItem) -> None:
        row = item_to_row(item)

        async def op() -> None:
            stmt = insert(Item).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Item.id],
                set_={
                    **{key: stmt.excluded[key] for key in row if key != "id"},
                    "updated_at": func.now(),
                },
            )
            async with self.database.SessionLocal() as session:
                await session.execute(stmt)
                await session.commit()

        await self._run("upsert_item", op)

    async def get_item(self, item_id: int) -> CatalogItem | None:
        async def op() -> CatalogItem | None:
            async with self.database.SessionLocal() as session:
                row = await session.get(Item, item_id)
                return row_to_item(row) if row else None

        return await self._run("get_item", op)

    # Embeddings

    async def upsert_embeddings(self, embeddings: list[FacetEmbedding]) -> int:
        """Insert or replace one row per (item, facet); last write wins."""
        if not embeddings:
            return 0
        rows = [
            {
                "id": uuid4(),
                "item_id": e.item_id,
                "facet": e.facet.value,
                "embedding": e.vector,
                "source_type": e.source_type.value,
                "provenance": e.provenance,
                "model": e.model,
                "version": e.version,
            }
            for e in embeddings
        ]

        async def op() -> int:
            stmt = insert(ItemEmbedding).values(rows)
            stmt = stmt.on_conflict_do_update(
                constraint="uq_item_embeddings_item_facet",
                set_={
                    "embedding": stmt.excluded.embedding,
                    "source_type": stmt.excluded.source_type,
                    "provenance": stmt.excluded.provenance,
                    "model": stmt.excluded.model,
                    "version": stmt.excluded.version,
                    "updated_at": func.now(),
                },
            )
            async with self.database.SessionLocal() as session:
                await session.execute(stmt)
                await session.commit()
            return len(rows)

        return await self._run("upsert_embeddings", op)

    async def get_embeddings(self, item_id: int) -> dict[FacetType, FacetEmbedding]:
        async def op() -> dict[FacetType, FacetEmbedding]:
            async with self.database.SessionLocal() as session:
                result = await session.execute(
                    select(ItemEmbedding).where(ItemEmbedding.item_id == item_id)
                )
                return {
                    FacetType(row.facet): FacetEmbedding(
                        item_id=row.item_id,
                        facet=FacetType(row.facet),
                        vector=np.asarray(row.embedding, dtype=float).tolist(),
                        source_type=SourceType(row.source_type),
                        provenance=row.provenance or {},
                        model=row.model,
                        version=row.version,
                    )
                    for row in result.scalars()
                }

        return await self._run("get_embeddings", op)

    async def nearest_item_ids(
        self,
        facet: FacetType,
        vector: Sequence[float],
        limit: int | None,
        exclude_item_id: int | None = None,
    ) -> list[int]:
        """Items closest to ``vector`` on ``facet`` by pgvector cosine distance."""

        async def op() -> list[int]:
            query = select(ItemEmbedding.item_id).where(ItemEmbedding.facet == facet.value)
            if exclude_item_id is not None:
                query = query.where(ItemEmbedding.item_id != exclude_item_id)
            query = query.order_by(ItemEmbedding.embedding.cosine_distance(list(vector)))
            if limit is not None:
                query = query.limit(limit)
            async with self.database.SessionLocal() as session:
                result = await session.execute(query)
                return list(result.scalars())

        return await self._run("nearest_item_ids", op)

    async def get_facet_vectors(
        self, item_ids: Sequence[int], facets: Sequence[FacetType]
    ) -> FacetVectors:
        if not item_ids or not facets:
            return {}

        async def op() -> FacetVectors:
            query = select(
                ItemEmbedding.item_id, ItemEmbedding.facet, ItemEmbedding.embedding
            ).where(
                ItemEmbedding.item_id.in_(list(item_ids)),
                ItemEmbedding.facet.in_([f.value for f in facets]),
            )
            vectors: FacetVectors = {}
            async with self.database.SessionLocal() as session:
                for item_id, facet, embedding in await session.execute(query):
                    vectors.setdefault(item_id, {})[FacetType(facet)] = np.asarray(
                        embedding, dtype=float
                    )
            return vectors

        return await self._run("get_facet_vectors", op)

    # Jobs

    async def _find_active_job(self, session, source_ref: str) -> IngestJob | None:
        result = await session.execute(
            select(IngestJob)
            .where(
                IngestJob.source_ref == source_ref,
                IngestJob.status.in_([s.value for s in ACTIVE_JOB_STATUSES]),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_job_or_get_active(
        self, source_ref: str, status: JobStatus
    ) -> tuple[JobRecord, bool]:
        """
        Create a job unless one is already active for ``source_ref``.

        Returns:
            The job and whether it was newly created
        """

        async def op() -> tuple[JobRecord, bool]:
            async with self.database.SessionLocal() as session:
                existing = await self._find_active_job(session, source_ref)
                if existing:
                    return JobRecord.model_validate(existing), False

                now = datetime.now(UTC)
                job = IngestJob(
                    id=uuid4(),
                    source_ref=source_ref,
                    status=status.value,
                    created_at=now,
                    updated_at=now,
                )
                try:
                    session.add(job)
                    await session.commit()
                    await session.refresh(job)
                    return JobRecord.model_validate(job), True
                except sa_exc.IntegrityError as e:
                    await session.rollback()
                    # Another request created the active job first
                    if ACTIVE_JOB_INDEX in str(e):
                        existing = await self._find_active_job(session, source_ref)
                        if existing:
                            return JobRecord.model_validate(existing), False
                    raise

        return await self._run("create_job", op)

    async def get_job(self, job_id: UUID) -> JobRecord | None:
        async def op() -> JobRecord | None:
            async with self.database.SessionLocal() as session:
                job = await session.get(IngestJob, job_id)
                return JobRecord.model_validate(job) if job else None

        return await self._run("get_job", op)

    async def latest_job(self, source_ref: str) -> JobRecord | None:
        async def op() -> JobRecord | None:
            async with self.database.SessionLocal() as session:
                result = await session.execute(
                    select(IngestJob)
                    .where(IngestJob.source_ref == source_ref)
                    .order_by(IngestJob.created_at.desc())
                    .limit(1)
                )
                job = result.scalar_one_or_none()
                return JobRecord.model_validate(job) if job else None

        return await self._run("latest_job", op)

    async def transition_job(
        self,
        job_id: UUID,
        status: JobStatus,
        *,
        item_id: int | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Move a job to ``status`` if the transition is allowed from its current state.

        Returns:
            False when the job is missing or already past ``status``
        """
        now = datetime.now(UTC)
        values: dict = {"status": status.value, "updated_at": now}
        if status in TERMINAL_JOB_STATUSES:
            values["finished_at"] = now
        if item_id is not None:
            values["item_id"] = item_id
        if error is not None:
            values["error"] = error

        async def op() -> bool:
            async with self.database.SessionLocal() as session:
                result = await session.execute(
                    update(IngestJob)
                    .where(
                        IngestJob.id == job_id,
                        IngestJob.status.in_([s.value for s in allowed_from(status)]),
                    )
                    .values(**values)
                )
                await session.commit()
                return result.rowcount > 0

        return await self._run("transition_job", op)
