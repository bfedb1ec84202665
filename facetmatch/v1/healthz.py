from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from facetmatch.config.settings import Settings, SettingsDep
from facetmatch.infra.database import get_session
from facetmatch.infra.services import Services, ServicesDep
from facetmatch.v1.core.exceptions import create_success_response

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    backend: str
    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class BackgroundHealth(BaseModel):
    """Detached ingestion task status."""

    pending_tasks: int
    accepting: bool


class HealthResponse(BaseModel):
    """Health response with storage and background task status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    database: DatabaseHealth
    background: BackgroundHealth
    providers: dict[str, str]


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep,
    services: Services = ServicesDep,
    session: AsyncSession | None = Depends(get_session),
):
    """Health check endpoint with database and background task status."""

    db_health = await _check_database_health(session)

    health = HealthResponse(
        ok=db_health.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        database=db_health,
        background=BackgroundHealth(
            pending_tasks=services.supervisor.pending,
            accepting=services.supervisor.accepting,
        ),
        providers={
            "embeddings": settings.embeddings.value,
            "image_embeddings": settings.image_embeddings.value,
            "vision": settings.vision.value,
            "web_search": settings.web_search.value,
        },
    )

    return create_success_response(data=health.model_dump())


async def _check_database_health(session: AsyncSession | None) -> DatabaseHealth:
    """Check database connectivity and response time."""
    if session is None:
        return DatabaseHealth(backend="memory", connected=True)

    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            backend="postgres",
            connected=True,
            response_time_ms=round(response_time_ms, 2),
        )

    except Exception as e:
        return DatabaseHealth(backend="postgres", connected=False, error=str(e))
