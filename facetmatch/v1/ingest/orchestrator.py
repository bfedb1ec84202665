"""
Ingestion orchestration.

The quick path resolves a source reference, fetches catalog metadata and
persists it. The complete path extracts facet descriptions, fuses them into
embeddings and persists those, then marks the job succeeded. Jobs move
``queued -> running -> succeeded | failed`` and never leave a terminal state.
"""

import asyncio
from uuid import UUID

from facetmatch.config.logging import bind_ingest_context, get_logger
from facetmatch.v1.catalog.client import CatalogClient
from facetmatch.v1.catalog.schemas import CatalogItem
from facetmatch.v1.core.exceptions import EmptyResponseError, FacetMatchException
from facetmatch.v1.embeddings.fuser import EmbeddingFuser
from facetmatch.v1.embeddings.schemas import FacetEmbedding
from facetmatch.v1.facets.extractor import FacetExtractor
from facetmatch.v1.ingest.jobs import IngestJobService
from facetmatch.v1.ingest.schemas import IngestResult, QuickIngestResult
from facetmatch.v1.ingest.supervisor import BackgroundSupervisor
from facetmatch.v1.storage.models import JobStatus
from facetmatch.v1.storage.repository import Repository
from facetmatch.v1.storage.schemas import JobRecord

logger = get_logger(__name__)

CANCELLED_ERROR = "cancelled"


def describe_error(e: BaseException) -> str:
    """Message written to a failed job row."""
    if isinstance(e, FacetMatchException):
        return f"{e.kind}: {e.message}"
    return f"{e.__class__.__name__}: {e}"


def error_kind(e: BaseException) -> str:
    return e.kind if isinstance(e, FacetMatchException) else "INTERNAL"


class IngestionOrchestrator:
    def __init__(
        self,
        catalog: CatalogClient,
        extractor: FacetExtractor,
        fuser: EmbeddingFuser,
        repository: Repository,
        jobs: IngestJobService,
        supervisor: BackgroundSupervisor,
    ):
        self.catalog = catalog
        self.extractor = extractor
        self.fuser = fuser
        self.repository = repository
        self.jobs = jobs
        self.supervisor = supervisor

    async def _fetch_and_store(self, source_ref: str) -> CatalogItem:
        item_id = await self.catalog.resolve(source_ref)
        bind_ingest_context(item_id=item_id)
        item = await self.catalog.fetch(item_id)
        await self.repository.upsert_item(item)
        logger.info("Item metadata stored", item_id=item.id, title=item.title)
        return item

    async def _complete(self, item: CatalogItem) -> list[FacetEmbedding]:
        documents = await self.extractor.extract(item)
        embeddings = await self.fuser.embed_all(item, documents)
        if not embeddings:
            raise EmptyResponseError(
                "no facet embeddings produced", details={"item_id": item.id}
            )
        await self.repository.upsert_embeddings(embeddings)
        logger.info(
            "Facet embeddings stored",
            item_id=item.id,
            facets=sorted(e.facet.value for e in embeddings),
        )
        return embeddings

    @staticmethod
    def _deduplicated(job: JobRecord) -> IngestResult:
        return IngestResult(
            job_id=job.id,
            item_id=job.item_id,
            status=job.status,
            deduplicated=True,
        )

    async def quick_ingest(self, source_ref: str) -> QuickIngestResult:
        """Fetch and persist metadata only. No job row is written."""
        try:
            item = await self._fetch_and_store(source_ref)
        except FacetMatchException as e:
            logger.warning(
                "Quick ingest failed", source_ref=source_ref, kind=e.kind, error=e.message
            )
            return QuickIngestResult(
                error=e.message, error_kind=e.kind, status_code=e.status_code
            )
        return QuickIngestResult(item_id=item.id)

    async def _fail_job(
        self, job_id: UUID, message: str, item_id: int | None = None, attempts: int = 2
    ) -> bool:
        """Write ``failed`` for a job, trying again once; never raises."""
        for attempt in range(1, attempts + 1):
            try:
                return await self.jobs.fail(job_id, message, item_id=item_id)
            except Exception as e:
                logger.error(
                    "Could not mark job failed",
                    job_id=str(job_id),
                    attempt=attempt,
                    error=describe_error(e),
                )
        return False

    async def ingest(self, source_ref: str) -> IngestResult:
        """Run the quick and complete paths under one running job, awaited."""
        job, deduplicated = await self.jobs.open_job(source_ref, JobStatus.RUNNING)
        if deduplicated:
            return self._deduplicated(job)

        bind_ingest_context(job_id=str(job.id))
        item_id: int | None = None
        try:
            item = await self._fetch_and_store(source_ref)
            item_id = item.id
            await self._complete(item)
            await self.jobs.succeed(job.id, item.id)
        except asyncio.CancelledError:
            await self._fail_job(job.id, CANCELLED_ERROR, item_id=item_id)
            raise
        except Exception as e:
            message = describe_error(e)
            logger.error("Ingest failed", job_id=str(job.id), error=message)
            await self._fail_job(job.id, message, item_id=item_id)
            return IngestResult(
                job_id=job.id,
                item_id=item_id,
                status=JobStatus.FAILED,
                error=message,
                error_kind=error_kind(e),
            )

        logger.info("Ingest succeeded", job_id=str(job.id), item_id=item.id)
        return IngestResult(job_id=job.id, item_id=item.id, status=JobStatus.SUCCEEDED)

    async def submit(self, source_ref: str) -> IngestResult:
        """
        Run the quick path inline and detach the complete path.

        The returned job is ``queued``; callers poll ``job_status`` for the
        outcome of the complete path.
        """
        job, deduplicated = await self.jobs.open_job(source_ref, JobStatus.QUEUED)
        if deduplicated:
            return self._deduplicated(job)

        bind_ingest_context(job_id=str(job.id))
        item_id: int | None = None
        try:
            item = await self._fetch_and_store(source_ref)
            item_id = item.id
            self.supervisor.spawn(
                self.run_complete_path(job.id, item), name=f"ingest-complete-{job.id}"
            )
        except Exception as e:
            message = describe_error(e)
            logger.warning("Detached ingest not started", job_id=str(job.id), error=message)
            await self._fail_job(job.id, message, item_id=item_id)
            return IngestResult(
                job_id=job.id,
                item_id=item_id,
                status=JobStatus.FAILED,
                error=message,
                error_kind=error_kind(e),
            )

        return IngestResult(job_id=job.id, item_id=item.id, status=JobStatus.QUEUED)

    async def run_complete_path(self, job_id: UUID, item: CatalogItem) -> None:
        """Detached body: always leaves the job in a terminal state."""
        bind_ingest_context(job_id=str(job_id), item_id=item.id)
        try:
            if not await self.jobs.start(job_id):
                logger.warning(
                    "Job no longer queued, skipping complete path", job_id=str(job_id)
                )
                return
            await self._complete(item)
            await self.jobs.succeed(job_id, item.id)
        except asyncio.CancelledError:
            await self._fail_job(job_id, CANCELLED_ERROR, item_id=item.id)
            raise
        except Exception as e:
            message = describe_error(e)
            logger.error("Complete path failed", job_id=str(job_id), error=message)
            await self._fail_job(job_id, message, item_id=item.id)
            return

        logger.info("Complete path succeeded", job_id=str(job_id), item_id=item.id)

    async def job_status(self, job_id: UUID) -> JobRecord:
        return await self.jobs.get(job_id)
