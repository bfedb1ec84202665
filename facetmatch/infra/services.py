"""
Process-wide service container.

Every client and component is constructed once at startup and handed to the
components that need it; request handlers read them off ``app.state``.
"""

from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, Request

from facetmatch.config.logging import get_logger
from facetmatch.config.settings import Settings, StorageType
from facetmatch.infra.database import Database
from facetmatch.v1.catalog.client import CatalogClient
from facetmatch.v1.core.rate_limit import RateLimiter
from facetmatch.v1.core.registries import (
    captioner_registry,
    image_embedder_registry,
    text_embedder_registry,
    web_search_registry,
)
from facetmatch.v1.core.retry import RetryPolicy
from facetmatch.v1.embeddings.fuser import EmbeddingFuser
from facetmatch.v1.facets.extractor import FacetExtractor
from facetmatch.v1.ingest.jobs import IngestJobService
from facetmatch.v1.ingest.orchestrator import IngestionOrchestrator
from facetmatch.v1.ingest.supervisor import BackgroundSupervisor
from facetmatch.v1.similarity.retriever import SimilarityRetriever
from facetmatch.v1.storage.memory import InMemoryRepository
from facetmatch.v1.storage.repository import Repository, SqlAlchemyRepository

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    repository: Repository
    catalog: CatalogClient
    extractor: FacetExtractor
    fuser: EmbeddingFuser
    jobs: IngestJobService
    supervisor: BackgroundSupervisor
    orchestrator: IngestionOrchestrator
    retriever: SimilarityRetriever
    database: Database | None = None
    providers: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        """Drain detached work, then release clients and connections."""
        await self.supervisor.drain(self.settings.background_drain_timeout_s)
        await self.catalog.aclose()
        for provider in self.providers:
            close = getattr(provider, "aclose", None)
            if close is not None:
                await close()
        await self.repository.close()
        logger.info("Services closed")


def _build(registry, selected: str, settings: Settings):
    if selected == "none":
        return None
    return registry.get(selected)(settings)


def build_services(
    settings: Settings,
    repository: Repository | None = None,
    catalog: CatalogClient | None = None,
) -> Services:
    """Wire every component from settings; registries must be initialized."""
    retry_policy = RetryPolicy.from_settings(settings)

    database = None
    if repository is None:
        if settings.storage == StorageType.POSTGRES:
            database = Database(settings)
            repository = SqlAlchemyRepository(database, retry_policy)
        else:
            repository = InMemoryRepository()

    if catalog is None:
        limiter = RateLimiter(settings.catalog_min_interval_s, name="catalog")
        catalog = CatalogClient(settings, limiter, retry_policy=retry_policy)

    text_embedder = _build(text_embedder_registry, settings.embeddings.value, settings)
    image_embedder = _build(
        image_embedder_registry, settings.image_embeddings.value, settings
    )
    captioner = _build(captioner_registry, settings.vision.value, settings)
    web_searcher = _build(web_search_registry, settings.web_search.value, settings)

    extractor = FacetExtractor(
        captioner=captioner,
        web_searcher=web_searcher,
        retry_policy=retry_policy,
        max_images=settings.max_vision_images,
    )
    fuser = EmbeddingFuser(
        text_embedder,
        image_embedder,
        dimensions=settings.embedding_dimensions,
        version=settings.embedding_version,
        max_screenshots=settings.max_embedding_screenshots,
        retry_policy=retry_policy,
    )
    jobs = IngestJobService(repository, settings)
    supervisor = BackgroundSupervisor()
    orchestrator = IngestionOrchestrator(
        catalog, extractor, fuser, repository, jobs, supervisor
    )
    retriever = SimilarityRetriever(repository, settings.candidate_pool_size)

    logger.info(
        "Services built",
        storage=settings.storage.value,
        embeddings=settings.embeddings.value,
        image_embeddings=settings.image_embeddings.value,
        vision=settings.vision.value,
        web_search=settings.web_search.value,
    )
    return Services(
        settings=settings,
        repository=repository,
        catalog=catalog,
        extractor=extractor,
        fuser=fuser,
        jobs=jobs,
        supervisor=supervisor,
        orchestrator=orchestrator,
        retriever=retriever,
        database=database,
        providers=[
            p for p in (text_embedder, image_embedder, captioner, web_searcher) if p
        ],
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


ServicesDep = Depends(get_services)
