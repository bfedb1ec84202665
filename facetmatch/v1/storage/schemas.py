from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from facetmatch.v1.storage.models import JobStatus


class JobRecord(BaseModel):
    """Storage-independent view of an ingest job row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    source_ref: str
    item_id: int | None = None
    status: JobStatus
    error: str | None = None
    created_at: datetime
    updated_at: datetime
    finished_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.QUEUED, JobStatus.RUNNING)
