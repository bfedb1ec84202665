"""
Ingestion API endpoints.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from facetmatch.infra.services import Services, ServicesDep
from facetmatch.v1.core.exceptions import create_error_response, create_success_response
from facetmatch.v1.ingest.schemas import IngestRequest, JobResponse

router = APIRouter()


@router.post("/ingest", response_model=dict)
async def ingest(
    payload: IngestRequest,
    request: Request,
    detached: bool = Query(
        default=False, description="Return after the quick path and finish in the background"
    ),
    services: Services = ServicesDep,
) -> dict[str, Any]:
    """Ingest a catalog item; failures are reported on the job."""
    orchestrator = services.orchestrator
    if detached:
        result = await orchestrator.submit(payload.source_ref)
    else:
        result = await orchestrator.ingest(payload.source_ref)

    return create_success_response(
        data=result.model_dump(mode="json"),
        request_id=getattr(request.state, "request_id", None),
    )


@router.post("/ingest/quick", response_model=dict)
async def quick_ingest(
    payload: IngestRequest,
    request: Request,
    services: Services = ServicesDep,
):
    """Fetch and store catalog metadata only."""
    result = await services.orchestrator.quick_ingest(payload.source_ref)
    request_id = getattr(request.state, "request_id", None)

    if not result.ok:
        status_code = result.status_code or 502
        return JSONResponse(
            status_code=status_code,
            content=create_error_response(
                status_code=status_code,
                message=result.error,
                request_id=request_id,
                kind=result.error_kind,
            ),
        )

    return create_success_response(
        data=result.model_dump(mode="json"), request_id=request_id
    )


@router.get("/jobs/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    request: Request,
    services: Services = ServicesDep,
) -> dict[str, Any]:
    """Poll an ingest job."""
    job = await services.orchestrator.job_status(job_id)
    return create_success_response(
        data=JobResponse.from_record(job).model_dump(mode="json"),
        request_id=getattr(request.state, "request_id", None),
    )
