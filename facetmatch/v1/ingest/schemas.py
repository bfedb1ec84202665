"""
Ingestion request and response schemas.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from facetmatch.v1.storage.models import JobStatus
from facetmatch.v1.storage.schemas import JobRecord


class IngestRequest(BaseModel):
    """Schema for ingest requests."""

    source_ref: str = Field(
        ..., min_length=1, description="Catalog id, store URL or title"
    )


class IngestResult(BaseModel):
    """Outcome of ``ingest`` or ``submit``: a job plus an item or an error."""

    job_id: UUID
    item_id: int | None = None
    status: JobStatus
    error: str | None = None
    error_kind: str | None = None
    deduplicated: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class QuickIngestResult(BaseModel):
    """Outcome of ``quick_ingest``: metadata persisted, no job row."""

    item_id: int | None = None
    error: str | None = None
    error_kind: str | None = None
    # HTTP status the route answers with when the quick path failed
    status_code: int | None = Field(default=None, exclude=True)

    @property
    def ok(self) -> bool:
        return self.error is None


class JobResponse(BaseModel):
    """Schema for job polling responses."""

    id: UUID
    source_ref: str
    item_id: int | None = None
    status: str
    error: str | None = None
    created_at: datetime
    updated_at: datetime
    finished_at: datetime | None = None

    @classmethod
    def from_record(cls, job: JobRecord) -> "JobResponse":
        return cls(**job.model_dump(exclude={"status"}), status=job.status.value)
