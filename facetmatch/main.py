from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from facetmatch.config.logging import get_logger, setup_logging
from facetmatch.config.settings import Settings, settings as default_settings
from facetmatch.infra.services import Services, build_services
from facetmatch.v1.core.exceptions import (
    FacetMatchException,
    RequestContextMiddleware,
    facetmatch_exception_handler,
    general_exception_handler,
    http_exception_handler,
)
from facetmatch.v1.core.registries import (
    captioner_registry,
    image_embedder_registry,
    text_embedder_registry,
    web_search_registry,
)
from facetmatch.v1.healthz import router as health_router
from facetmatch.v1.inference.registry_init import init_inference_registries
from facetmatch.v1.ingest.routes import router as ingest_router
from facetmatch.v1.similarity.routes import router as similarity_router

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None, services: Services | None = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``services`` lets callers supply a prebuilt container (tests); otherwise
    one is built from ``settings`` on startup and closed on shutdown.
    """
    settings = settings or default_settings

    # Initialize structured logging
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = services is None
        if owned:
            init_inference_registries(settings)
            app.state.services = build_services(settings)
        else:
            app.state.services = services

        # Freeze registries in non-development environments to prevent runtime modifications
        if settings.environment != "development":
            text_embedder_registry.freeze()
            image_embedder_registry.freeze()
            captioner_registry.freeze()
            web_search_registry.freeze()

        logger.info("Application started", environment=settings.environment)
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()
            else:
                await app.state.services.supervisor.drain(
                    settings.background_drain_timeout_s
                )
            logger.info("Application stopped")

    # Create FastAPI app with API versioning from day 1
    app = FastAPI(
        title=settings.app_name,
        description="Multi-facet embedding ingestion and similarity retrieval",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(FacetMatchException, facetmatch_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(ingest_router, prefix="/v1", tags=["ingest"])
    app.include_router(similarity_router, prefix="/v1", tags=["similarity"])

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "facetmatch.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )
