"""
Ingest job service: job creation with deduplication and monotonic updates.
"""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from facetmatch.config.settings import Settings
from facetmatch.v1.catalog.source_ref import parse_source_ref
from facetmatch.v1.core.exceptions import NotFoundError
from facetmatch.v1.storage.models import JobStatus
from facetmatch.v1.storage.repository import Repository
from facetmatch.v1.storage.schemas import JobRecord

logger = logging.getLogger(__name__)

STALE_JOB_ERROR = "stale: no progress within the allowed window"


def normalize_source_ref(source_ref: str) -> str:
    """
    Canonical key jobs are deduplicated on.

    Ids and store URLs collapse to the numeric id; titles are compared
    case-insensitively.
    """
    item_id = parse_source_ref(source_ref)
    if item_id is not None:
        return str(item_id)
    return " ".join(source_ref.split()).lower()


class IngestJobService:
    """Service for creating and advancing ingest jobs."""

    def __init__(self, repository: Repository, settings: Settings):
        self.repository = repository
        self.settings = settings

    def _is_stale(self, job: JobRecord, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        threshold = timedelta(seconds=self.settings.ingest_job_stale_after_s)
        return job.is_active and now - job.updated_at > threshold

    async def open_job(
        self, source_ref: str, status: JobStatus = JobStatus.RUNNING
    ) -> tuple[JobRecord, bool]:
        """
        Create a job for ``source_ref`` or reuse the active one.

        Args:
            source_ref: Raw reference submitted by the caller
            status: Initial status for a freshly created job

        Returns:
            The job and whether it was deduplicated onto an existing active job
        """
        key = normalize_source_ref(source_ref)

        latest = await self.repository.latest_job(key)
        if latest is not None and self._is_stale(latest):
            failed = await self.repository.transition_job(
                latest.id, JobStatus.FAILED, error=STALE_JOB_ERROR
            )
            logger.warning(
                "Stale ingest job failed",
                extra={
                    "job_id": str(latest.id),
                    "source_ref": key,
                    "status": latest.status.value,
                    "updated_at": latest.updated_at.isoformat(),
                    "transitioned": failed,
                },
            )

        job, created = await self.repository.create_job_or_get_active(key, status)

        if created:
            logger.info(
                "Ingest job created",
                extra={"job_id": str(job.id), "source_ref": key, "status": status.value},
            )
        else:
            logger.info(
                "Ingest job deduplicated",
                extra={
                    "job_id": str(job.id),
                    "source_ref": key,
                    "status": job.status.value,
                },
            )
        return job, not created

    async def _transition(
        self,
        job_id: UUID,
        status: JobStatus,
        *,
        item_id: int | None = None,
        error: str | None = None,
    ) -> bool:
        changed = await self.repository.transition_job(
            job_id, status, item_id=item_id, error=error
        )
        if changed:
            logger.info(
                "Ingest job updated",
                extra={
                    "job_id": str(job_id),
                    "status": status.value,
                    "item_id": item_id,
                    "error": error,
                },
            )
        else:
            # Terminal jobs are never reopened
            logger.warning(
                "Ingest job transition rejected",
                extra={"job_id": str(job_id), "target_status": status.value},
            )
        return changed

    async def start(self, job_id: UUID) -> bool:
        return await self._transition(job_id, JobStatus.RUNNING)

    async def succeed(self, job_id: UUID, item_id: int) -> bool:
        return await self._transition(job_id, JobStatus.SUCCEEDED, item_id=item_id)

    async def fail(
        self, job_id: UUID, error: str, item_id: int | None = None
    ) -> bool:
        return await self._transition(
            job_id, JobStatus.FAILED, item_id=item_id, error=error
        )

    async def get(self, job_id: UUID) -> JobRecord:
        job = await self.repository.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Ingest job {job_id} not found")
        return job
