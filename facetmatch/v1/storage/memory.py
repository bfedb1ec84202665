import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import UUID, uuid4

from facetmatch.v1.catalog.schemas import CatalogItem
from facetmatch.v1.core.vectors import cosine_similarity
from facetmatch.v1.embeddings.schemas import FacetEmbedding
from facetmatch.v1.facets.config import FacetType
from facetmatch.v1.storage.models import TERMINAL_JOB_STATUSES, JobStatus, allowed_from
from facetmatch.v1.storage.repository import FacetVectors
from facetmatch.v1.storage.schemas import JobRecord


class InMemoryRepository:
    """
    Process-local repository with the same semantics as the Postgres one.

    One embedding per (item, facet) with last write wins, at most one active
    job per source ref, and conditional job transitions. Nearest-neighbour
    lookups are exhaustive scans.
    """

    prefilters = False

    def __init__(self):
        self.items: dict[int, CatalogItem] = {}
        self.embeddings: dict[tuple[int, FacetType], FacetEmbedding] = {}
        self.jobs: dict[UUID, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        return None

    async def upsert_item(self, item: CatalogItem) -> None:
        self.items[item.id] = item

    async def get_item(self, item_id: int) -> CatalogItem | None:
        return self.items.get(item_id)

    async def upsert_embeddings(self, embeddings: list[FacetEmbedding]) -> int:
        for embedding in embeddings:
            self.embeddings[(embedding.item_id, embedding.facet)] = embedding
        return len(embeddings)

    async def get_embeddings(self, item_id: int) -> dict[FacetType, FacetEmbedding]:
        return {
            facet: embedding
            for (owner, facet), embedding in self.embeddings.items()
            if owner == item_id
        }

    async def nearest_item_ids(
        self,
        facet: FacetType,
        vector: Sequence[float],
        limit: int | None,
        exclude_item_id: int | None = None,
    ) -> list[int]:
        scored = [
            (cosine_similarity(vector, embedding.vector), item_id)
            for (item_id, emb_facet), embedding in self.embeddings.items()
            if emb_facet == facet and item_id != exclude_item_id
        ]
        scored.sort(key=lambda pair: (-pair[0], pair[1]))
        ids = [item_id for _, item_id in scored]
        return ids if limit is None else ids[:limit]

    async def get_facet_vectors(
        self, item_ids: Sequence[int], facets: Sequence[FacetType]
    ) -> FacetVectors:
        wanted_ids = set(item_ids)
        wanted_facets = set(facets)
        vectors: FacetVectors = {}
        for (item_id, facet), embedding in self.embeddings.items():
            if item_id in wanted_ids and facet in wanted_facets:
                vectors.setdefault(item_id, {})[facet] = embedding.vector
        return vectors

    async def create_job_or_get_active(
        self, source_ref: str, status: JobStatus
    ) -> tuple[JobRecord, bool]:
        async with self._lock:
            for job in self.jobs.values():
                if job.source_ref == source_ref and job.is_active:
                    return job, False

            now = datetime.now(UTC)
            job = JobRecord(
                id=uuid4(),
                source_ref=source_ref,
                status=status,
                created_at=now,
                updated_at=now,
            )
            self.jobs[job.id] = job
            return job, True

    async def get_job(self, job_id: UUID) -> JobRecord | None:
        return self.jobs.get(job_id)

    async def latest_job(self, source_ref: str) -> JobRecord | None:
        latest: JobRecord | None = None
        # Insertion order breaks created_at ties
        for job in self.jobs.values():
            if job.source_ref == source_ref and (
                latest is None or job.created_at >= latest.created_at
            ):
                latest = job
        return latest

    async def transition_job(
        self,
        job_id: UUID,
        status: JobStatus,
        *,
        item_id: int | None = None,
        error: str | None = None,
    ) -> bool:
        async with self._lock:
            job = self.jobs.get(job_id)
            if job is None or job.status not in allowed_from(status):
                return False

            now = datetime.now(UTC)
            updates: dict = {"status": status, "updated_at": now}
            if status in TERMINAL_JOB_STATUSES:
                updates["finished_at"] = now
            if item_id is not None:
                updates["item_id"] = item_id
            if error is not None:
                updates["error"] = error
            self.jobs[job_id] = job.model_copy(update=updates)
            return True
